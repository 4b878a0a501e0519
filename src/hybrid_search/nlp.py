"""Noun extraction, stemming and generic-noun filtering for query enhancement.

:class:`NlpPreprocessor` is built once at startup and passed to the enhancement
pipeline, the orchestrator and the suggestion service. Part-of-speech tagging goes
through a :class:`PosTagger` so tests can substitute a deterministic tagger; the
default wraps NLTK's perceptron tagger and named-entity chunker. Stemming uses the
NLTK Snowball English stemmer, which needs no corpus data.

Examples
--------
>>> from hybrid_search.nlp import NlpPreprocessor
>>> nlp = NlpPreprocessor()
>>> nlp.stem_word("laundry")
'laundr'
>>> nlp.filter_generic_nouns(["help", "laundr", "servic"])
['laundr']
"""

# [nav:section public-api]

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Protocol

import nltk
from nltk.stem.snowball import SnowballStemmer

from directory_common.logging import get_logger
from directory_common.navmap import load_nav_metadata

__all__ = [
    "GENERIC_NOUNS",
    "NLTK_RESOURCES",
    "KeywordVariations",
    "NlpPreprocessor",
    "NltkPosTagger",
    "PosTagger",
    "StaticSynonyms",
    "StemResult",
    "SynonymProvider",
    "TaggedToken",
    "WordNetSynonyms",
    "download_nltk_resources",
]
__navmap__ = load_nav_metadata(__name__, tuple(__all__))

logger = get_logger(__name__)

# [nav:anchor NLTK_RESOURCES]
NLTK_RESOURCES: Mapping[str, str] = {
    "averaged_perceptron_tagger_eng": "taggers/averaged_perceptron_tagger_eng",
    "maxent_ne_chunker_tab": "chunkers/maxent_ne_chunker_tab",
    "words": "corpora/words",
    "wordnet": "corpora/wordnet",
}

# Stemmed forms of nouns too broad to narrow a directory search.
# [nav:anchor GENERIC_NOUNS]
GENERIC_NOUNS: frozenset[str] = frozenset(
    {
        "agenc",
        "anyth",
        "assist",
        "help",
        "info",
        "inform",
        "kind",
        "locat",
        "lot",
        "need",
        "option",
        "peopl",
        "person",
        "place",
        "program",
        "provid",
        "question",
        "resourc",
        "servic",
        "someon",
        "someth",
        "stuff",
        "support",
        "thing",
        "way",
    }
)

_NOUN_TAGS = ("NN", "NNS", "NNP", "NNPS")


@dataclass(frozen=True, slots=True)
# [nav:anchor TaggedToken]
class TaggedToken:
    """A token with its Penn Treebank tag and named-entity membership."""

    text: str
    tag: str
    in_entity: bool = False

    @property
    def is_noun(self) -> bool:
        """Return ``True`` for common and proper noun tags."""
        return self.tag in _NOUN_TAGS


# [nav:anchor PosTagger]
class PosTagger(Protocol):
    """Part-of-speech tagger used for noun extraction."""

    def tag(self, text: str) -> list[TaggedToken]:
        """Return tagged tokens for ``text``."""
        ...


# [nav:anchor NltkPosTagger]
class NltkPosTagger:
    """Tagger backed by ``nltk.pos_tag`` and ``nltk.ne_chunk``.

    Requires the ``averaged_perceptron_tagger_eng``, ``maxent_ne_chunker_tab`` and
    ``words`` NLTK data packages (see :func:`download_nltk_resources`).
    """

    def tag(self, text: str) -> list[TaggedToken]:
        tokens = nltk.tokenize.wordpunct_tokenize(text)
        if not tokens:
            return []
        tree = nltk.ne_chunk(nltk.pos_tag(tokens))
        tagged: list[TaggedToken] = []
        for node in tree:
            if isinstance(node, nltk.Tree):
                tagged.extend(
                    TaggedToken(word, tag, in_entity=True) for word, tag in node.leaves()
                )
            else:
                word, tag = node
                tagged.append(TaggedToken(word, tag))
        return tagged


# [nav:anchor download_nltk_resources]
def download_nltk_resources(*, quiet: bool = True) -> list[str]:
    """Download any missing NLTK data packages and return their names."""
    fetched: list[str] = []
    for package, resource in NLTK_RESOURCES.items():
        try:
            nltk.data.find(resource)
        except LookupError:
            nltk.download(package, quiet=quiet)
            fetched.append(package)
    return fetched


# [nav:anchor SynonymProvider]
class SynonymProvider(Protocol):
    """Source of synonyms for a single noun."""

    def synonyms(self, word: str) -> list[str]:
        """Return synonyms for ``word``, excluding the word itself."""
        ...


# [nav:anchor StaticSynonyms]
class StaticSynonyms:
    """Synonyms from a fixed mapping; keys are matched case-insensitively."""

    def __init__(self, mapping: Mapping[str, Sequence[str]] | None = None) -> None:
        self._mapping = {key.lower(): list(values) for key, values in (mapping or {}).items()}

    def synonyms(self, word: str) -> list[str]:
        return list(self._mapping.get(word.lower(), ()))


# [nav:anchor WordNetSynonyms]
class WordNetSynonyms:
    """Noun synonyms from the NLTK WordNet corpus.

    Parameters
    ----------
    max_per_word : int, optional
        Cap on synonyms returned for one word. Defaults to 3.
    """

    def __init__(self, max_per_word: int = 3) -> None:
        self._max_per_word = max_per_word

    def synonyms(self, word: str) -> list[str]:
        from nltk.corpus import wordnet  # noqa: PLC0415

        lowered = word.lower()
        found: list[str] = []
        try:
            synsets = wordnet.synsets(lowered, pos=wordnet.NOUN)
        except LookupError:
            logger.warning(
                "WordNet data unavailable; skipping synonyms",
                extra={"operation": "nlp.synonyms", "status": "degraded"},
            )
            return []
        for synset in synsets:
            for lemma in synset.lemma_names():
                candidate = lemma.replace("_", " ").lower()
                if candidate != lowered and candidate not in found:
                    found.append(candidate)
                if len(found) >= self._max_per_word:
                    return found
        return found


@dataclass(frozen=True, slots=True)
# [nav:anchor StemResult]
class StemResult:
    """Outcome of :meth:`NlpPreprocessor.stem_query_for_suggestion`.

    Attributes
    ----------
    original : str
        Query as given.
    stemmed : str
        Space-joined stems; empty when every extracted noun was generic.
    should_use_stemmed : bool
        ``True`` when ``stemmed`` differs from ``original`` and has at least
        three characters.
    extracted_nouns : tuple[str, ...] | None
        Nouns found in queries longer than two words; ``None`` otherwise.
    """

    original: str
    stemmed: str
    should_use_stemmed: bool
    extracted_nouns: tuple[str, ...] | None = None


@dataclass(frozen=True, slots=True)
# [nav:anchor KeywordVariations]
class KeywordVariations:
    """Query text variants that feed the three keyword clauses."""

    original: str
    nouns: tuple[str, ...] = ()
    stemmed_nouns: tuple[str, ...] = ()
    stemmed_text: str = ""


# [nav:anchor NlpPreprocessor]
class NlpPreprocessor:
    """Stateless NLP helpers over an injected tagger.

    Parameters
    ----------
    tagger : PosTagger | None, optional
        Part-of-speech tagger. Defaults to :class:`NltkPosTagger`.
    synonyms : SynonymProvider | None, optional
        Synonym source. Defaults to :class:`WordNetSynonyms`.
    generic_nouns : Iterable[str] | None, optional
        Stemmed stoplist. Defaults to :data:`GENERIC_NOUNS`.
    """

    def __init__(
        self,
        tagger: PosTagger | None = None,
        synonyms: SynonymProvider | None = None,
        generic_nouns: Iterable[str] | None = None,
    ) -> None:
        self._tagger = tagger if tagger is not None else NltkPosTagger()
        self.synonyms = synonyms if synonyms is not None else WordNetSynonyms()
        self._stemmer = SnowballStemmer("english")
        self._generic = (
            frozenset(generic_nouns) if generic_nouns is not None else GENERIC_NOUNS
        )

    def extract_nouns(self, text: str) -> list[str]:
        """Return lowercased nouns of ``text`` that are not part of a named entity.

        Missing tagger data degrades to an empty list with a warning.
        """
        if not text or not text.strip():
            return []
        try:
            tokens = self._tagger.tag(text)
        except LookupError as exc:
            logger.warning(
                "POS tagging unavailable; skipping noun extraction: %s",
                str(exc).splitlines()[0] if str(exc) else type(exc).__name__,
                extra={"operation": "nlp.extract_nouns", "status": "degraded"},
            )
            return []
        return [token.text.lower() for token in tokens if token.is_noun and not token.in_entity]

    def stem_word(self, word: str) -> str:
        """Snowball-stem ``word`` and drop a trailing ``i`` from stems over 2 chars."""
        if not word or not word.strip():
            return word
        stemmed = self._stemmer.stem(word)
        if stemmed.endswith("i") and len(stemmed) > 2:
            stemmed = stemmed[:-1]
        return stemmed

    def stem_words(self, words: Iterable[str]) -> list[str]:
        """Stem each word of ``words``."""
        return [self.stem_word(word) for word in words]

    def is_generic_noun(self, stemmed: str) -> bool:
        """Return ``True`` when ``stemmed`` (or its stem) is in the stoplist."""
        lowered = stemmed.lower()
        return lowered in self._generic or self.stem_word(lowered) in self._generic

    def filter_generic_nouns(self, terms: Iterable[str]) -> list[str]:
        """Drop generic terms, preserving the order of the rest."""
        return [term for term in terms if not self.is_generic_noun(term)]

    @staticmethod
    def word_count(query: str) -> int:
        """Return the number of whitespace-separated words in ``query``."""
        return len(query.split())

    def stem_query_for_suggestion(self, query: str) -> StemResult:
        """Stem a query for prefix matching against taxonomy names.

        Queries of more than two words are reduced to their non-generic stemmed
        nouns; when every noun is generic the stemmed form is empty and must not be
        used. Shorter queries stem each word of at least three characters and keep
        shorter tokens as typed. Queries under three characters pass through.

        Parameters
        ----------
        query : str
            Raw user query.

        Returns
        -------
        StemResult
            Stemmed form and whether it should replace the original.
        """
        stripped = query.strip() if query else ""
        if len(stripped) < 3:
            return StemResult(original=query, stemmed=query, should_use_stemmed=False)

        words = stripped.lower().split()
        if len(words) > 2:
            nouns = self.extract_nouns(stripped)
            kept = self.filter_generic_nouns(self.stem_words(nouns))
            if not kept:
                logger.debug(
                    "All nouns generic; stemmed query is empty",
                    extra={"operation": "nlp.stem_query", "nouns": nouns},
                )
                return StemResult(
                    original=query,
                    stemmed="",
                    should_use_stemmed=False,
                    extracted_nouns=tuple(nouns),
                )
            stemmed = " ".join(kept)
            return StemResult(
                original=query,
                stemmed=stemmed,
                should_use_stemmed=stemmed != query and len(stemmed) >= 3,
                extracted_nouns=tuple(nouns),
            )

        stemmed = " ".join(self.stem_word(word) if len(word) >= 3 else word for word in words)
        return StemResult(
            original=query,
            stemmed=stemmed,
            should_use_stemmed=stemmed != query and len(stemmed) >= 3,
        )

    def process_text_for_search(self, text: str) -> KeywordVariations:
        """Return the original text, its nouns and their stems."""
        if not text or not text.strip():
            return KeywordVariations(original=text)
        nouns = self.extract_nouns(text)
        return KeywordVariations(
            original=text,
            nouns=tuple(nouns),
            stemmed_nouns=tuple(self.stem_words(nouns)),
            stemmed_text=" ".join(self.stem_words(text.lower().split())),
        )

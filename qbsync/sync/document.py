# qbsync Question Documents
# Split an exported question document into its category chain and payload

import copy
from dataclasses import dataclass, field

from lxml import etree

from qbsync.errors import DocumentError

XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>\n'


@dataclass(frozen=True)
class CategoryDecl:
    """One category declaration block, outermost first in a chain."""

    path: str
    content: str


@dataclass(frozen=True)
class EntityDocument:
    """A decoded question document."""

    payload: str
    name: str = ""
    category_chain: list[CategoryDecl] = field(default_factory=list)

    @property
    def leaf_category(self) -> CategoryDecl | None:
        """Deepest declared category, if any."""
        return self.category_chain[-1] if self.category_chain else None


def _parse(content: str) -> etree._Element:
    # CDATA sections stay CDATA.
    parser = etree.XMLParser(remove_blank_text=True, remove_comments=True, strip_cdata=False, resolve_entities=False)
    try:
        root = etree.fromstring(content.encode("utf-8"), parser)
    except etree.XMLSyntaxError as e:
        raise DocumentError(f"Question document is not valid XML: {e}") from e

    if root.tag != "quiz":
        raise DocumentError(f"Expected a <quiz> document, got <{root.tag}>.")
    return root


def _serialize(quiz: etree._Element) -> str:
    return XML_DECLARATION + etree.tostring(quiz, encoding="unicode", pretty_print=True)


def _wrap(elements: list[etree._Element]) -> str:
    quiz = etree.Element("quiz")
    quiz.extend(copy.deepcopy(element) for element in elements)
    return _serialize(quiz)


def normalize_document(content: str) -> str:
    """
    Canonical on-disk form of a question document.

    Comments (Moodle adds the question id as one) and blank text are dropped
    and the result is re-indented. Every question file is written in this
    form, so unchanged questions produce unchanged files.

    Raises:
        DocumentError: If the content is not a ``<quiz>`` document.
    """
    return _serialize(_parse(content))


def parse_entity_document(content: str) -> EntityDocument:
    """
    Decode a remote question document.

    The document is a ``<quiz>`` holding zero or more
    ``<question type="category">`` blocks followed by the question itself.

    Args:
        content: Raw XML returned by the export call.

    Returns:
        EntityDocument with the category chain and a normalized quiz
        document holding only the question.

    Raises:
        DocumentError: If the content is not XML or holds no question.
    """
    root = _parse(content)

    chain: list[CategoryDecl] = []
    questions: list[etree._Element] = []
    for element in root.findall("question"):
        if element.get("type") == "category":
            path = (element.findtext("./category/text") or "").strip()
            if not path:
                raise DocumentError("Category block without a category path.")
            chain.append(CategoryDecl(path=path, content=_wrap([element])))
        else:
            questions.append(element)

    if not questions:
        raise DocumentError("Question document holds no question.")

    name = (questions[0].findtext("./name/text") or "").strip()
    return EntityDocument(payload=_wrap(questions), name=name, category_chain=chain)

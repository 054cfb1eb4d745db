import pytest

from qryeval.index import InMemoryIndex

# Body lengths: 3, 2, 3, 3, 2, 3 (collection length 16)
CORPUS = [
    {"body": "apple banana apple", "title": "fruit salad"},
    {"body": "banana cherry", "title": "cherry pie"},
    {"body": "apple cherry date", "url": "wikipedia org apple"},
    {"body": "date elderberry fig"},
    {"body": "fig grape"},
    {"body": "grape honeydew fig", "inlink": "grape juice"},
]
IDS = [f"d{i}" for i in range(len(CORPUS))]
ATTRIBUTES = [
    {"spamScore": "70", "rawUrl": "http://example.com/fruit/salad.html", "PageRank": "1.5"},
    {"spamScore": "20"},
    {"spamScore": "90", "rawUrl": "http://en.wikipedia.org/wiki/Apple", "PageRank": "3.5"},
    {},
    {},
    {"rawUrl": "http://grapes.org/"},
]


@pytest.fixture
def index():
    return InMemoryIndex.from_texts(CORPUS, ids=IDS, attributes=ATTRIBUTES)


def positional_index(*bodies):
    """An index whose body fields are the given token lists, verbatim."""
    return InMemoryIndex([{"body": list(tokens)} for tokens in bodies])

"""Tests for query intent classification."""

import pytest

from hybrid_retrieval.intelligence.query_understanding import (
    IntentType,
    QueryIntentClassifier,
    parse_intent,
)


@pytest.fixture
def classifier():
    return QueryIntentClassifier()


@pytest.mark.parametrize("query, operation, column", [
    ("total revenue", "sum", "revenue"),
    ("sum of the sales", "sum", "sales"),
    ("average of price", "average", "price"),
    ("mean salary", "average", "salary"),
    ("highest price", "max", "price"),
    ("lowest stock", "min", "stock"),
])
def test_aggregations(classifier, query, operation, column):
    """Aggregation keywords name the operation and the column."""
    intent = classifier.classify(query)
    assert intent.type == IntentType.AGGREGATE
    assert intent.operation == operation
    assert intent.column == column
    assert intent.matched_rule == operation


def test_count(classifier):
    intent = classifier.classify("how many rows are there")
    assert intent.type == IntentType.AGGREGATE
    assert intent.operation == "count"
    assert intent.column is None


def test_semantic_markers_outrank_aggregations(classifier):
    """Explicit questions are semantic even when they mention 'total'."""
    intent = classifier.classify("what is the total revenue")
    assert intent.type == IntentType.SEMANTIC
    assert intent.semantic_query == "what is the total revenue"
    assert intent.matched_rule == "semantic_marker"

    assert classifier.classify("Explain the top 5 products").type == IntentType.SEMANTIC
    assert classifier.classify("compare Paris and Lyon").type == IntentType.SEMANTIC


def test_where_clause(classifier):
    """show/find ... where <col> is <value> is an equality filter."""
    intent = classifier.classify("show rows where city is Paris")
    assert intent.type == IntentType.FILTER
    assert intent.column == "city"
    assert intent.value == "Paris"
    assert [c.to_dict() for c in intent.conditions] == [
        {"column": "city", "operator": "=", "value": "Paris"}
    ]


def test_where_clause_with_quotes(classifier):
    intent = classifier.classify('find records with category = "Dessert"')
    assert intent.matched_rule == "where"
    assert intent.value == "Dessert"


@pytest.mark.parametrize("query, operator, value", [
    ("price greater than 100", ">", 100.0),
    ("stock is more than 1,000", ">", 1000.0),
    ("price over 4.5", ">", 4.5),
    ("price below 50", "<", 50.0),
    ("age less than 30", "<", 30.0),
])
def test_numeric_comparisons(classifier, query, operator, value):
    """Comparison phrases become numeric conditions."""
    intent = classifier.classify(query)
    assert intent.type == IntentType.FILTER
    condition = intent.conditions[0]
    assert condition.operator == operator
    assert condition.value == value


def test_contains_and_equals(classifier):
    contains = classifier.classify("name contains apple")
    assert contains.conditions[0].operator == "contains"
    assert contains.conditions[0].value == "apple"

    equals = classifier.classify("city = Lyon")
    assert equals.matched_rule == "equals"
    assert equals.column == "city"
    assert equals.value == "Lyon"


@pytest.mark.parametrize("query, operation, column, limit, order", [
    ("sort by price descending", "sort", "price", None, "desc"),
    ("order by name", "sort", "name", None, "asc"),
    ("top 3 by price", "top", "price", 3, "desc"),
    ("bottom 2 price", "bottom", "price", 2, "asc"),
    ("first 10 rows", "top", None, 10, "desc"),
])
def test_sorts(classifier, query, operation, column, limit, order):
    """Sort phrases carry column, limit and direction."""
    intent = classifier.classify(query)
    assert intent.type == IntentType.SORT
    assert intent.operation == operation
    assert intent.column == column
    assert intent.limit == limit
    assert intent.order == order


@pytest.mark.parametrize("query", ["describe the dataset", "give me a summary", "show statistics"])
def test_describe(classifier, query):
    assert classifier.classify(query).type == IntentType.DESCRIBE


def test_column_keyword_heuristic(classifier):
    """A keyword naming a known column becomes a column search."""
    intent = classifier.classify("paris city", columns=["City", "Population"])
    assert intent.type == IntentType.SEARCH
    assert intent.matched_rule == "column_keyword"
    assert intent.column == "City"
    assert intent.value == "paris"


def test_free_text(classifier):
    """Anything else is a free-text search for the whole query."""
    intent = classifier.classify("Paris", columns=["city"])
    assert intent.type == IntentType.SEARCH
    assert intent.operation == "find"
    assert intent.value == "Paris"
    assert intent.matched_rule == "free_text"


@pytest.mark.parametrize("query", ["", "   ", None])
def test_empty_query(classifier, query):
    intent = classifier.classify(query)
    assert intent.type == IntentType.UNKNOWN
    assert intent.matched_rule == "empty"


def test_column_names_resolve_to_fields(classifier):
    """Extracted columns are mapped onto real field names ignoring case."""
    intent = classifier.classify("sum of PRICE", columns=["Price", "Stock"])
    assert intent.column == "Price"

    intent = classifier.classify("STOCK greater than 3", columns=["Price", "Stock"])
    assert intent.conditions[0].column == "Stock"


def test_keywords_skip_common_words(classifier):
    intent = classifier.classify("show rows where city is Paris")
    assert intent.keywords == ["city", "paris"]


def test_intents_are_counted(metrics_collector):
    """Classifications are counted per intent type."""
    classifier = QueryIntentClassifier(metrics_collector)
    classifier.classify("total revenue")
    classifier.classify("how many rows")
    assert 'hr_intent_classifications_total{intent="aggregate"} 2.0' in metrics_collector.get_metrics()


def test_parse_intent_and_to_dict():
    """Module-level helper and serialisation."""
    payload = parse_intent("top 3 by price").to_dict()
    assert payload["type"] == "sort"
    assert payload["limit"] == 3
    assert payload["column"] == "price"
    assert payload["conditions"] == []
    assert payload["matched_rule"] == "top"

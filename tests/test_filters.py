import pytest

from scim_provisioning.filters import (
    FILTER_ATTRIBUTES,
    FilterOperator,
    StorePredicate,
    build_predicate,
    parse_filter,
    tokenize,
    translate,
)
from scim_provisioning.models import ScimError, UserRecord
from scim_provisioning.store import MemoryUserStore

BAD_OPERATORS = ["gt", "ge", "lt", "le", "pr", "EQ", "Sw", "like", "and"]


def test_tokenize_keeps_quoted_literal_together():
    assert tokenize('userName eq "john doe"') == ["userName", "eq", "john doe"]


@pytest.mark.parametrize("raw", [None, "", "   "])
def test_empty_filter_returns_none(raw):
    assert parse_filter(raw) is None
    assert build_predicate(raw) is None


@pytest.mark.parametrize("attribute", list(FILTER_ATTRIBUTES))
@pytest.mark.parametrize("operator", BAD_OPERATORS)
def test_unsupported_operator_is_rejected(attribute, operator):
    with pytest.raises(ScimError) as exc:
        parse_filter(f'{attribute} {operator} "x"')
    assert exc.value.status == 400
    assert exc.value.scim_type == "invalidFilter"


@pytest.mark.parametrize("raw", [
    'title eq "x"',
    'username eq "x"',
    'emails.value eq "x"',
    'userName eq',
    'userName',
    'userName eq x',
    'userName eq "a" and name.givenName eq "b"',
    'userName eq "a" extra',
])
def test_malformed_filter_is_rejected(raw):
    with pytest.raises(ScimError) as exc:
        parse_filter(raw)
    assert exc.value.scim_type == "invalidFilter"


def test_parse_filter():
    expr = parse_filter('name.familyName sw "Do"')
    assert expr.attribute == "name.familyName"
    assert expr.operator == FilterOperator.STARTS_WITH
    assert expr.literal == "Do"


def test_empty_quoted_literal_is_allowed():
    expr = parse_filter('userName eq ""')
    assert expr.literal == ""


@pytest.mark.parametrize("operator,pattern", [
    ("sw", "jo%"),
    ("ew", "%jo"),
    ("co", "%jo%"),
    ("eq", "jo"),
    ("neq", "jo"),
])
def test_translate_builds_like_pattern(operator, pattern):
    predicate = translate(parse_filter(f'userName {operator} "jo"'))
    assert predicate.field == "username"
    assert predicate.pattern == pattern


def test_translate_maps_attributes_to_fields():
    assert build_predicate('emails co "example"').field == "email"
    assert build_predicate('name.givenName eq "John"').field == "given_name"
    assert build_predicate('name.familyName eq "Doe"').field == "family_name"


def test_like_wildcards_in_literal_are_escaped():
    predicate = StorePredicate("username", FilterOperator.CONTAINS, "50%")
    assert predicate.matches("save50%now")
    assert not predicate.matches("save50now")


@pytest.mark.parametrize("operator,value,expected", [
    ("sw", "john.doe", True),
    ("sw", "doe.john", False),
    ("ew", "doe.john", True),
    ("co", "xjohnx", True),
    ("co", "jane", False),
    ("eq", "JOHN", True),
    ("eq", "johnny", False),
    ("neq", "johnny", True),
    ("neq", "John", False),
])
def test_predicate_matches(operator, value, expected):
    predicate = StorePredicate("username", FilterOperator(operator), "john")
    assert predicate.matches(value) is expected


FIELD_VALUES = {
    "userName": "jdoe",
    "name.familyName": "Doe",
    "name.givenName": "John",
    "emails": "jdoe@example.com",
}


@pytest.mark.parametrize("attribute", list(FILTER_ATTRIBUTES))
def test_eq_and_neq_round_trip(attribute):
    store = MemoryUserStore()
    record = UserRecord(
        username="jdoe",
        given_name="John",
        family_name="Doe",
        email="jdoe@example.com",
        external_id="A-1",
    )
    store.insert(record)
    store.insert(UserRecord(
        username="other",
        given_name="Other",
        family_name="Person",
        email="other@example.com",
        external_id="B-2",
    ))
    literal = FIELD_VALUES[attribute]

    found = store.query(build_predicate(f'{attribute} eq "{literal}"'), limit=10)
    assert [r.external_id for r in found] == ["A-1"]

    excluded = store.query(build_predicate(f'{attribute} neq "{literal}"'), limit=10)
    assert "A-1" not in [r.external_id for r in excluded]
    assert "B-2" in [r.external_id for r in excluded]

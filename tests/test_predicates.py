import pytest
from pfbuilder.engine.predicates import (
    create_predicate_context, evaluate_predicate, add_roll_option, remove_roll_option, has_roll_option,
)
from pfbuilder.engine.schema_models import PredicateObject


@pytest.fixture
def ctx():
    return create_predicate_context(
        options={"rage", "wielding-shield"},
        level=5,
        traits=["dwarf", "humanoid"],
        effects=["bless"],
    )


def test_no_predicate_is_true(ctx):
    assert evaluate_predicate(None, ctx) is True
    assert evaluate_predicate([], ctx) is True
    assert evaluate_predicate(None, create_predicate_context()) is True


def test_plain_roll_option(ctx):
    assert evaluate_predicate(["rage"], ctx)
    assert not evaluate_predicate(["fatigued"], ctx)


def test_list_is_and(ctx):
    assert evaluate_predicate(["rage", "wielding-shield"], ctx)
    assert not evaluate_predicate(["rage", "fatigued"], ctx)


def test_and_composition_matches_individual_statements(ctx):
    statements = ["rage", "self:trait:dwarf", "self:level:gte:3", {"not": "fatigued"}, "self:effect:haste"]
    assert evaluate_predicate(statements, ctx) == all(evaluate_predicate([s], ctx) for s in statements)
    assert evaluate_predicate(statements[:4], ctx) == all(evaluate_predicate([s], ctx) for s in statements[:4])


def test_effect_and_trait(ctx):
    assert evaluate_predicate(["self:effect:bless"], ctx)
    assert not evaluate_predicate(["self:effect:haste"], ctx)
    assert evaluate_predicate(["self:trait:dwarf"], ctx)
    assert not evaluate_predicate(["self:trait:elf"], ctx)


def test_effect_without_effect_list_is_false():
    assert not evaluate_predicate(["self:effect:bless"], create_predicate_context(level=1))
    assert not evaluate_predicate(["self:trait:dwarf"], create_predicate_context(level=1))


def test_level_gte_scenario():
    assert evaluate_predicate(["self:level:gte:5"], create_predicate_context(level=4)) is False
    assert evaluate_predicate(["self:level:gte:5"], create_predicate_context(level=5)) is True


@pytest.mark.parametrize("stmt,expected", [
    ("self:level:exact:5", True),
    ("self:level:5", True),
    ("self:level:6", False),
    ("self:level:lte:5", True),
    ("self:level:gt:5", False),
    ("self:level:gt:4", True),
    ("self:level:lt:6", True),
    ("self:level:lt:5", False),
    ("self:level:gte:x", False),
    ("self:level:between:5", False),
])
def test_level_comparisons(ctx, stmt, expected):
    assert evaluate_predicate([stmt], ctx) is expected


def test_level_without_level_is_false():
    assert evaluate_predicate(["self:level:gte:1"], create_predicate_context(options={"x"})) is False


def test_unknown_structured_string_is_false(ctx):
    assert not evaluate_predicate(["self:ancestry:dwarf"], ctx)
    assert not evaluate_predicate(["target:trait:undead"], ctx)


def test_composite_dicts(ctx):
    assert evaluate_predicate([{"not": "fatigued"}], ctx)
    assert not evaluate_predicate([{"not": "rage"}], ctx)
    assert evaluate_predicate([{"or": ["fatigued", "rage"]}], ctx)
    assert not evaluate_predicate([{"or": ["fatigued", "haste"]}], ctx)
    assert evaluate_predicate([{"and": ["rage", {"or": ["self:trait:elf", "self:trait:dwarf"]}]}], ctx)
    assert evaluate_predicate([{}], ctx)


def test_composite_not_takes_priority(ctx):
    # only the first present key counts
    assert evaluate_predicate([{"not": "fatigued", "and": ["missing"]}], ctx)


def test_composite_models(ctx):
    stmt = PredicateObject.model_validate({"or": ["haste", {"not": "self:effect:bless"}]})
    assert not evaluate_predicate([stmt], ctx)
    stmt = PredicateObject.model_validate({"and": ["rage", "self:level:exact:5"]})
    assert evaluate_predicate([stmt], ctx)


def test_roll_option_helpers_do_not_mutate(ctx):
    added = add_roll_option(ctx, "flanking")
    assert has_roll_option(added, "flanking")
    assert not has_roll_option(ctx, "flanking")
    removed = remove_roll_option(added, "rage")
    assert not has_roll_option(removed, "rage")
    assert has_roll_option(added, "rage")

"""Tests for conditions, connectives and condition rendering."""

from __future__ import annotations

from relata import Logic, Op, Params, and_, eq, get_dialect, gt, in_, like, lte, not_eq, or_, where
from relata.params import render_conditions


class TestConditions:
    """Tests for condition constructors."""

    def test_operators(self):
        """Each helper builds the matching operator."""
        assert eq("a", 1).op is Op.EQ
        assert not_eq("a", 1).op is Op.NOT_EQ
        assert gt("a", 1).op is Op.GT
        assert lte("a", 1).op is Op.LTE
        assert like("a", "x%").op is Op.LIKE
        assert in_("a", 1, 2).op is Op.IN

    def test_in_expands_single_collection(self):
        """A single list argument is expanded into the value list."""
        assert in_("id", [1, 2, 3]).value == [1, 2, 3]
        assert in_("id", 1, 2).value == [1, 2]

    def test_connectives(self):
        """where/and_ mark AND, or_ marks OR."""
        assert all(c.logic is Logic.AND for c in where(eq("a", 1), eq("b", 2)))
        assert all(c.logic is Logic.AND for c in and_(eq("a", 1)))
        assert all(c.logic is Logic.OR for c in or_(eq("a", 1), eq("b", 2)))

    def test_params_defaults(self):
        """A bare Params selects everything without limit."""
        params = Params()
        assert params.where == []
        assert params.select == set()
        assert params.limit == 0
        assert params.include == {}


class TestRenderConditions:
    """Tests for rendering conditions with numbered placeholders."""

    def test_numbering_postgres(self):
        """Placeholders are numbered in emission order."""
        conditions = where(eq("name", "Alice"), gt("age", 18)) + or_(in_("id", 2, 3))
        sql, args = render_conditions(conditions, get_dialect("postgres"))
        assert sql == "name = $1 AND age > $2 OR id IN ($3, $4)"
        assert args == ["Alice", 18, 2, 3]

    def test_start_offset(self):
        """Numbering can continue after earlier placeholders."""
        sql, args = render_conditions(where(eq("id", 7)), get_dialect("postgres"), start=3)
        assert sql == "id = $3"
        assert args == [7]

    def test_first_connective_ignored(self):
        """The connective of the first condition is not rendered."""
        sql, _ = render_conditions(or_(eq("a", 1)), get_dialect("sqlite"))
        assert sql == "a = ?"

    def test_mysql_placeholders(self):
        sql, args = render_conditions(where(eq("a", 1), like("b", "x%")), get_dialect("mysql"))
        assert sql == "a = %s AND b LIKE %s"
        assert args == [1, "x%"]

    def test_empty_in(self):
        """An empty IN list matches nothing and binds nothing."""
        sql, args = render_conditions(where(in_("id", [])), get_dialect("postgres"))
        assert sql == "1 = 0"
        assert args == []

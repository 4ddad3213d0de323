from __future__ import annotations

import pytest

from multinsert.config import ColumnMapping, GroupConfig
from multinsert.context import TypedResolver
from multinsert.errors import ResolutionError, TransformError
from multinsert.mapping import RowMapper, to_rows


@pytest.fixture
def mapper() -> RowMapper:
    return RowMapper(TypedResolver(env={"SOURCE_TAG": "import"}))


def test_to_rows_normalizes_sources() -> None:
    assert to_rows(None) == []
    assert to_rows([{"a": 1}, 2]) == [{"a": 1}, 2]
    assert to_rows({"a": 1}) == [{"a": 1}]
    assert to_rows("not rows") == []
    assert to_rows(17) == []


class TestAutoMap:
    def test_rows_are_copied_and_columns_are_the_union_of_keys(self, mapper) -> None:
        group = GroupConfig(table="t", auto_map=True)
        mapped = mapper.map([{"a": 1}, {"b": 2}, {"a": 3, "c": None}], group)
        assert mapped.rows == [{"a": 1}, {"b": 2}, {"a": 3, "c": None}]
        assert mapped.columns == ["a", "b", "c"]

    def test_column_set_does_not_depend_on_row_order(self, mapper) -> None:
        group = GroupConfig(table="t", auto_map=True)
        rows = [{"a": 1, "b": 2}, {"c": 3}, {"b": 4, "d": 5}]
        forward = mapper.map(rows, group).columns
        backward = mapper.map(list(reversed(rows)), group).columns
        assert set(forward) == set(backward) == {"a", "b", "c", "d"}

    def test_non_object_elements_become_empty_rows(self, mapper) -> None:
        group = GroupConfig(table="t", auto_map=True)
        mapped = mapper.map([{"a": 1}, "junk", 5], group)
        assert mapped.rows == [{"a": 1}, {}, {}]
        assert mapped.columns == ["a"]

    def test_single_object_source_is_one_row(self, mapper) -> None:
        mapped = mapper.map({"a": 1}, GroupConfig(table="t", auto_map=True))
        assert mapped.rows == [{"a": 1}]

    def test_no_rows_means_no_columns(self, mapper) -> None:
        mapped = mapper.map([], GroupConfig(table="t", auto_map=True))
        assert mapped.rows == []
        assert mapped.columns == []

    def test_rows_are_copies(self, mapper) -> None:
        source = [{"a": 1}]
        mapped = mapper.map(source, GroupConfig(table="t", auto_map=True))
        mapped.rows[0]["a"] = 99
        assert source[0]["a"] == 1


class TestExplicitMapping:
    def _group(self, *mappings: ColumnMapping) -> GroupConfig:
        return GroupConfig(table="t", mappings=list(mappings))

    def test_each_mapping_resolves_and_transforms(self, mapper) -> None:
        group = self._group(
            ColumnMapping(column="name", source="user.name", transform="trim"),
            ColumnMapping(column="active", source="flags.active", transform="bool01"),
            ColumnMapping(column="qty", source="qty", transform="number"),
            ColumnMapping(column="origin", source="SOURCE_TAG", source_type="env"),
            ColumnMapping(column="kind", source="manual", source_type="str", transform="upper"),
            ColumnMapping(column="weight", source="2", source_type="num"),
            ColumnMapping(column="tags", source='["a"]', source_type="json"),
        )
        source = [{"user": {"name": "  Ada "}, "flags": {"active": "true"}, "qty": "3"}]

        mapped = mapper.map(source, group)

        assert mapped.columns == ["name", "active", "qty", "origin", "kind", "weight", "tags"]
        assert mapped.rows == [
            {
                "name": "Ada",
                "active": 1,
                "qty": 3,
                "origin": "import",
                "kind": "MANUAL",
                "weight": 2,
                "tags": ["a"],
            }
        ]

    def test_missing_source_values_are_null(self, mapper) -> None:
        group = self._group(
            ColumnMapping(column="a", source="a"),
            ColumnMapping(column="b", source="b", transform="nz"),
        )
        mapped = mapper.map([{"a": 1}], group)
        assert mapped.rows == [{"a": 1, "b": None}]

    def test_columns_come_from_mappings_even_without_rows(self, mapper) -> None:
        group = self._group(ColumnMapping(column="a", source="a"))
        mapped = mapper.map(None, group)
        assert mapped.rows == []
        assert mapped.columns == ["a"]

    def test_row_scoped_expression(self, mapper) -> None:
        group = self._group(
            ColumnMapping(
                column="full_name",
                source=lambda row: f"{row['first']} {row['last']}",
                source_type="expr",
            )
        )
        mapped = mapper.map([{"first": "Grace", "last": "Hopper"}], group)
        assert mapped.rows == [{"full_name": "Grace Hopper"}]

    def test_non_numeric_number_transform_fails(self, mapper) -> None:
        group = self._group(ColumnMapping(column="qty", source="qty", transform="number"))
        with pytest.raises(TransformError):
            mapper.map([{"qty": "three"}], group)

    def test_unresolvable_mapping_fails(self, mapper) -> None:
        group = self._group(ColumnMapping(column="doc", source="{broken", source_type="json"))
        with pytest.raises(ResolutionError):
            mapper.map([{}], group)

    def test_no_mappings_means_no_columns(self, mapper) -> None:
        mapped = mapper.map([{"a": 1}], self._group())
        assert mapped.columns == []
        assert mapped.rows == [{}]

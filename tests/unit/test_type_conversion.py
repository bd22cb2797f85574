"""
Tests for parameter conversion, type resolution and cell parsing.
"""
import datetime
import decimal
import uuid
from typing import Any, Optional

import numpy as np
import pandas as pd
import pytest
from procexec.types import Column, TypeConverter, columns_from_cursor_description
from procexec.types import is_null, parse_value, resolve_type, strip_formatting
from procexec.types import unique_column_names, unwrap_optional

from tests.fixtures.mocks import PG_INT4, PG_NUMERIC, PG_TEXT, PgColumn


class TestTypeConverter:

    @pytest.mark.parametrize(('value', 'expected'), [
        (None, None),
        ('null', 'null'),
        ('', ''),
        (float('nan'), None),
        (float('inf'), None),
        (np.float64('nan'), None),
        (np.int64(7), 7),
        (np.float32(1.5), 1.5),
        (pd.NaT, None),
        (np.datetime64('NaT'), None),
        (5, 5),
    ])
    def test_convert_value(self, value, expected):
        assert TypeConverter.convert_value(value) == expected

    def test_numpy_values_become_python_types(self):
        assert type(TypeConverter.convert_value(np.int64(7))) is int
        assert type(TypeConverter.convert_value(np.float64(2.5))) is float

    def test_datetime64(self):
        value = TypeConverter.convert_value(np.datetime64('2024-01-02T03:04:05'))
        assert value == datetime.datetime(2024, 1, 2, 3, 4, 5)

    def test_convert_params_keeps_container_type(self):
        assert TypeConverter.convert_params(('a', None, np.int64(1))) == ('a', None, 1)
        assert TypeConverter.convert_params(['a', float('nan')]) == ['a', None]
        assert TypeConverter.convert_params(None) is None


class TestResolveType:

    @pytest.mark.parametrize(('type_code', 'expected'), [
        (PG_INT4, int),
        (PG_TEXT, str),
        (PG_NUMERIC, decimal.Decimal),
        (16, bool),
        (1082, datetime.date),
        (1114, datetime.datetime),
        (1184, datetime.datetime),
        (701, float),
        (999999, str),
    ])
    def test_postgres_oids(self, type_code, expected):
        assert resolve_type('postgresql', type_code) is expected

    def test_python_type_codes(self):
        """Test pyodbc descriptions carry Python types directly"""
        assert resolve_type('mssql', decimal.Decimal) is decimal.Decimal
        assert resolve_type('mssql', datetime.datetime) is datetime.datetime

    def test_unknown_is_str(self):
        assert resolve_type('mssql', None) is str


class TestColumn:

    def test_from_postgres_description(self):
        item = PgColumn('amount', PG_NUMERIC, None, None, 10, 2, None)

        column = Column.from_cursor_description(item, 'postgresql')

        assert column.name == 'amount'
        assert column.python_type is decimal.Decimal
        assert (column.precision, column.scale) == (10, 2)

    def test_from_dbapi_description(self):
        item = ('Name', str, None, 50, 50, 0, False)

        column = Column.from_cursor_description(item, 'mssql')

        assert column.name == 'Name'
        assert column.python_type is str
        assert column.internal_size == 50
        assert column.nullable is False

    def test_columns_from_cursor_description(self, mocker):
        cursor = mocker.Mock(description=[('a', int, None, None, None, None, True),
                                          ('b', float, None, None, None, None, True)])

        columns = columns_from_cursor_description(cursor, 'mssql')

        assert Column.get_names(columns) == ['a', 'b']
        assert Column.get_column_types_dict(columns)['b']['python_type'] == 'float'

    def test_no_description(self, mocker):
        assert columns_from_cursor_description(mocker.Mock(description=None), 'mssql') == []

    @pytest.mark.parametrize(('names', 'expected'), [
        (['id', 'name'], ['id', 'name']),
        (['id', 'id', 'id'], ['id', 'id1', 'id2']),
        (['id', 'id', 'id1'], ['id', 'id2', 'id1']),
        (['ID', 'id'], ['ID', 'id1']),
        (['', ''], ['Column1', 'Column2']),
    ])
    def test_unique_column_names(self, names, expected):
        columns = [Column(name, None) for name in names]
        assert Column.get_names(unique_column_names(columns)) == expected

    def test_repeated_names_in_description(self, mocker):
        cursor = mocker.Mock(description=[('id', int, None, None, None, None, True),
                                          ('id', int, None, None, None, None, True)])

        columns = columns_from_cursor_description(cursor, 'mssql')

        assert Column.get_names(columns) == ['id', 'id1']


class TestHelpers:

    def test_unwrap_optional(self):
        assert unwrap_optional(int | None) is int
        assert unwrap_optional(Optional[str]) is str
        assert unwrap_optional(float) is float
        assert unwrap_optional(int | str) is Any

    @pytest.mark.parametrize('value', [None, float('nan'), np.nan, pd.NA, pd.NaT])
    def test_is_null(self, value):
        assert is_null(value)

    @pytest.mark.parametrize('value', ['', 0, 'null', [None]])
    def test_is_not_null(self, value):
        assert not is_null(value)

    def test_strip_formatting(self):
        assert strip_formatting('$1,234.50') == '1234.50'
        assert strip_formatting('12.5%') == '12.5'
        assert strip_formatting('plain') == 'plain'


class TestParseValue:

    @pytest.mark.parametrize(('value', 'target', 'expected'), [
        ('42', int, 42),
        ('$1,234', int, 1234),
        (' 7 ', int, 7),
        (3.0, int, 3),
        (True, int, 1),
        ('2.5%', float, 2.5),
        ('$1,234.56', decimal.Decimal, decimal.Decimal('1234.56')),
        (12, decimal.Decimal, decimal.Decimal('12')),
        ('yes', bool, True),
        ('F', bool, False),
        (1, bool, True),
        ('2024-03-01', datetime.date, datetime.date(2024, 3, 1)),
        ('03/01/2024', datetime.date, datetime.date(2024, 3, 1)),
        ('2024-03-01T10:30:00', datetime.datetime, datetime.datetime(2024, 3, 1, 10, 30)),
        (datetime.date(2024, 3, 1), datetime.datetime, datetime.datetime(2024, 3, 1)),
        (datetime.datetime(2024, 3, 1, 9, 0), datetime.date, datetime.date(2024, 3, 1)),
        ('10:15:00', datetime.time, datetime.time(10, 15)),
        ('7d3a1c2e-0000-4000-8000-000000000001', uuid.UUID,
         uuid.UUID('7d3a1c2e-0000-4000-8000-000000000001')),
        (5, str, '5'),
        (np.int64(9), int, 9),
    ])
    def test_conversions(self, value, target, expected):
        assert parse_value(value, target) == expected

    def test_pandas_timestamp(self):
        result = parse_value(pd.Timestamp('2024-03-01 10:00'), datetime.datetime)
        assert result == datetime.datetime(2024, 3, 1, 10, 0)
        assert type(result) is datetime.datetime

    @pytest.mark.parametrize('value', [None, float('nan'), pd.NaT, '', '$', '%,'])
    def test_null_or_empty_is_none(self, value):
        assert parse_value(value, int) is None

    def test_same_type_passes_through(self):
        value = decimal.Decimal('1.10')
        assert parse_value(value, decimal.Decimal) is value

    def test_any_target_passes_through(self):
        assert parse_value('$5', Any) == '$5'

    def test_numeric_mode_leaves_text(self):
        assert parse_value('$5, 10%', str) == '$5, 10%'

    def test_all_mode_strips_text(self):
        assert parse_value('$5, 10%', str, strip='all') == '5 10'

    def test_none_mode(self):
        assert parse_value('1000', int, strip='none') == 1000
        with pytest.raises(ValueError):
            parse_value('1,000', int, strip='none')

    @pytest.mark.parametrize(('value', 'target'), [
        ('abc', int),
        ('1.5', int),
        ('maybe', bool),
        ('not a date', datetime.date),
    ])
    def test_invalid(self, value, target):
        with pytest.raises((ValueError, OverflowError)):
            parse_value(value, target)

    def test_invalid_decimal(self):
        with pytest.raises(decimal.InvalidOperation):
            parse_value('12abc', decimal.Decimal)


if __name__ == '__main__':
    __import__('pytest').main([__file__])

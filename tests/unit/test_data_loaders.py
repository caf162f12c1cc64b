import pandas as pd
import pytest
from dbclient.options import iterdict_data_loader, pandas_numpy_data_loader
from dbclient.options import pandas_pyarrow_data_loader, use_iterdict_data_loader
from dbclient.types import Column


def _columns():
    return [Column(name='name', type_code=None), Column(name='age', type_code=None)]


def test_iterdict_data_loader():
    data = [{'name': 'Alice', 'age': 30}, {'name': 'Bob', 'age': 25}]
    assert iterdict_data_loader(data, _columns()) == data
    assert iterdict_data_loader([], _columns()) == []


def test_pandas_numpy_data_loader():
    """Test pandas_numpy_data_loader function"""
    data = [{'name': 'Alice', 'age': 30}, {'name': 'Bob', 'age': 25}]
    column_info = _columns()

    result = pandas_numpy_data_loader(data, column_info)
    assert isinstance(result, pd.DataFrame)
    assert list(result.columns) == Column.get_names(column_info)
    assert len(result) == 2
    assert result.iloc[0]['name'] == 'Alice'
    assert result.iloc[1]['age'] == 25
    assert set(result.attrs['column_types']) == {'name', 'age'}


def test_pandas_numpy_data_loader_empty():
    """Empty results keep their columns"""
    result = pandas_numpy_data_loader([], _columns())
    assert isinstance(result, pd.DataFrame)
    assert list(result.columns) == ['name', 'age']
    assert len(result) == 0


@pytest.mark.skipif(
    not hasattr(pd, 'ArrowDtype'),
    reason='ArrowDtype not available in this pandas version'
)
def test_pandas_pyarrow_data_loader():
    """Test pandas_pyarrow_data_loader function"""
    data = [{'name': 'Alice', 'age': 30}, {'name': 'Bob', 'age': 25}]
    column_info = _columns()

    result = pandas_pyarrow_data_loader(data, column_info)
    assert isinstance(result, pd.DataFrame)
    assert list(result.columns) == Column.get_names(column_info)
    assert len(result) == 2
    assert result.iloc[0]['name'] == 'Alice'
    assert result.iloc[1]['age'] == 25


def test_use_iterdict_data_loader_restores_loader():
    class Options:
        data_loader = staticmethod(pandas_numpy_data_loader)

    class Holder:
        options = Options()

        @use_iterdict_data_loader
        def current(self):
            return self.options.data_loader

    holder = Holder()
    assert holder.current() is iterdict_data_loader
    assert holder.options.data_loader is pandas_numpy_data_loader


if __name__ == '__main__':
    __import__('pytest').main([__file__])

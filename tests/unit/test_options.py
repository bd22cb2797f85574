import pytest
from procexec.options import ExecutorOptions, iterdict_data_loader
from procexec.options import pandas_numpy_data_loader


def test_init_defaults():
    """Test default initialization"""
    options = ExecutorOptions()

    assert options.connection_string is None
    assert options.connection_name == 'DefaultConnection'
    assert options.appname is not None
    assert options.data_loader == pandas_numpy_data_loader
    assert options.strip_formatting == 'numeric'

    assert options.timeout == 15
    assert options.command_timeout == 0

    assert options.use_pool is False
    assert options.pool_max_connections == 5
    assert options.pool_max_idle_time == 300
    assert options.pool_wait_timeout == 30
    assert options.clear_pool_on_release is False


def test_pooling_options():
    """Test connection pooling options"""
    options = ExecutorOptions(
        connection_string='postgresql+psycopg://u:p@localhost/db',
        use_pool=True,
        pool_max_connections=10,
        pool_max_idle_time=600,
        pool_wait_timeout=60,
        clear_pool_on_release=True,
    )

    assert options.use_pool is True
    assert options.pool_max_connections == 10
    assert options.pool_max_idle_time == 600
    assert options.pool_wait_timeout == 60
    assert options.clear_pool_on_release is True


def test_explicit_appname_and_loader():
    """Test explicit values are not replaced by defaults"""
    options = ExecutorOptions(appname='nightly_batch', data_loader=iterdict_data_loader)

    assert options.appname == 'nightly_batch'
    assert options.data_loader is iterdict_data_loader


def test_validation():
    """Test validation rules"""
    with pytest.raises(ValueError, match='strip_formatting'):
        ExecutorOptions(strip_formatting='some')

    with pytest.raises(ValueError):
        ExecutorOptions(timeout=-1)

    with pytest.raises(ValueError):
        ExecutorOptions(command_timeout=-5)


@pytest.mark.parametrize('mode', ['numeric', 'all', 'none'])
def test_strip_formatting_modes(mode):
    """Test every strip mode is accepted"""
    assert ExecutorOptions(strip_formatting=mode).strip_formatting == mode


if __name__ == '__main__':
    __import__('pytest').main([__file__])

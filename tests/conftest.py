import pathlib
import site

import pytest
from procexec.connection import dispose_all_engines
from procexec.mapping import clear_mappings

HERE = pathlib.Path(pathlib.Path(__file__).resolve()).parent
site.addsitedir(HERE)


@pytest.fixture(autouse=True)
def clear_registries():
    """Drop cached engines and record mappings so tests stay isolated."""
    dispose_all_engines()
    clear_mappings()
    yield
    dispose_all_engines()
    clear_mappings()


pytest_plugins = [
    'tests.fixtures.mocks',
    'tests.fixtures.values',
    'tests.fixtures.postgres',
]

import pathlib
import shutil

import pytest

DATA_DIR = pathlib.Path(__file__).parent / "data"


@pytest.fixture
def fixture_copy(tmp_path):
    """Copy a report from tests/data into tmp_path so results land beside it."""
    def copy(name):
        target = tmp_path / name
        shutil.copyfile(DATA_DIR / name, target)
        return target
    return copy


@pytest.fixture
def reference():
    def read(name):
        return (DATA_DIR / name).read_text(encoding="utf-8")
    return read

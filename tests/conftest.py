import sys
from pathlib import Path

import pytest

TESTS_DIR = Path(__file__).resolve().parent
if str(TESTS_DIR) not in sys.path:
    sys.path.insert(0, str(TESTS_DIR))

from repo_root import REPO_ROOT  # noqa: E402

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))


@pytest.fixture
def service_factory():
    """Build a MetadataService with injected collaborators."""
    from sdmeta_backend.config import ExtractionSettings
    from sdmeta_backend.features.metadata.service import MetadataService

    def _build(tag_reader=None, raster_decoder=None, **settings):
        return MetadataService(
            tag_reader=tag_reader,
            raster_decoder=raster_decoder,
            settings=ExtractionSettings(**settings),
        )

    return _build

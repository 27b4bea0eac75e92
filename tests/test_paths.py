# ABOUTME: Tests for archive group persistence paths
# ABOUTME: Checks header and content paths of root, binary and description resources

from foxflow.ocfl import paths


class TestPersistencePaths:
    """Test the fixed path layout"""

    def test_root_paths(self):
        assert paths.root_header_path() == ".fcrepo/fcr-root.json"
        assert paths.root_content_path() == "fcr-container.nt"

    def test_binary_paths(self):
        assert paths.binary_header_path("DS1") == ".fcrepo/DS1.json"
        assert paths.binary_content_path("DS1") == "DS1"

    def test_description_paths(self):
        assert paths.description_header_path("DS1") == ".fcrepo/DS1~fcr-desc.json"
        assert paths.description_content_path("DS1") == "DS1~fcr-desc.nt"

    def test_extension_qualified_name(self):
        assert paths.binary_content_path("DS2.jpg") == "DS2.jpg"
        assert paths.description_content_path("DS2.jpg") == "DS2.jpg~fcr-desc.nt"

    def test_header_paths_are_separate_from_content(self):
        assert paths.is_header_path(paths.binary_header_path("DS1"))
        assert paths.is_header_path(paths.root_header_path())
        assert not paths.is_header_path(paths.binary_content_path("DS1"))
        assert not paths.is_header_path(paths.root_content_path())

#!/usr/bin/env python3
"""
Test suite for archive_extractor.py

Tests src/ filtering, exclusions, wrapper directories, directory recreation
and failure modes.
"""

import os
import shutil
import sys
import tempfile

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from permcheck.archive_extractor import extract_project_archive, is_source_entry
from permcheck.exceptions import ArchiveExtractionError
from nestjs_samples import make_project_zip, make_zip, project_files


class TestArchiveExtraction:
    """Test extraction of the sample project"""

    @staticmethod
    def test_extracts_src_only_without_auth():
        print("\n=== Test: Extract src/ Without auth/ ===")

        with tempfile.TemporaryDirectory() as tmpdir:
            target = os.path.join(tmpdir, 'project')
            result = extract_project_archive(make_project_zip(), target)

            assert os.path.isfile(os.path.join(target, 'src', 'account', 'account.controller.ts'))
            assert os.path.isfile(os.path.join(target, 'src', 'account', 'policies', 'account.policy.ts'))
            assert not os.path.exists(os.path.join(target, 'package.json'))
            assert not os.path.exists(os.path.join(target, 'src', 'auth'))

            assert [os.path.basename(p) for p in result.controller_files] == ['account.controller.ts']
            assert result.skipped_entries == 2
            print(f"✓ Wrote {len(result.written_files)} files")

    @staticmethod
    def test_wrapper_directory_is_stripped():
        with tempfile.TemporaryDirectory() as tmpdir:
            target = os.path.join(tmpdir, 'project')
            result = extract_project_archive(make_project_zip(wrapper='bank-api/'), target)

            assert os.path.isfile(os.path.join(target, 'src', 'account', 'account.service.ts'))
            assert len(result.controller_files) == 1

    @staticmethod
    def test_finder_metadata_does_not_hide_wrapper():
        print("\n=== Test: Wrapper With __MACOSX Entries ===")
        files = project_files('bank/')
        files['__MACOSX/bank/src/._main.ts'] = 'x'
        files['__MACOSX/bank/src/account/._account.controller.ts'] = 'x'
        files['.DS_Store'] = 'x'

        with tempfile.TemporaryDirectory() as tmpdir:
            target = os.path.join(tmpdir, 'project')
            result = extract_project_archive(make_zip(files), target)

            assert [os.path.basename(p) for p in result.controller_files] == ['account.controller.ts']
            assert os.path.isfile(os.path.join(target, 'src', 'account', 'account.controller.ts'))
            assert not os.path.exists(os.path.join(target, '__MACOSX'))
            print(f"✓ {len(result.controller_files)} controller extracted")

    @staticmethod
    def test_resource_forks_inside_src_are_skipped():
        files = project_files()
        files['src/account/._account.controller.ts'] = 'x'
        with tempfile.TemporaryDirectory() as tmpdir:
            result = extract_project_archive(make_zip(files), os.path.join(tmpdir, 'project'))
            assert [os.path.basename(p) for p in result.controller_files] == ['account.controller.ts']

    @staticmethod
    def test_existing_directory_is_replaced():
        with tempfile.TemporaryDirectory() as tmpdir:
            target = os.path.join(tmpdir, 'project')
            os.makedirs(os.path.join(target, 'src', 'stale'))
            with open(os.path.join(target, 'src', 'stale', 'old.controller.ts'), 'w') as f:
                f.write('stale')

            extract_project_archive(make_project_zip(), target)
            assert not os.path.exists(os.path.join(target, 'src', 'stale'))

    @staticmethod
    def test_controller_order_follows_archive_entries():
        files = {
            'src/zeta/zeta.controller.ts': '// z',
            'src/alpha/alpha.controller.ts': '// a',
        }
        with tempfile.TemporaryDirectory() as tmpdir:
            result = extract_project_archive(
                make_zip(files, directories=['src', 'src/zeta', 'src/alpha', 'src/user']),
                os.path.join(tmpdir, 'project'),
            )
            names = [os.path.basename(p) for p in result.controller_files]
            assert names == ['zeta.controller.ts', 'alpha.controller.ts']
            assert not os.path.exists(os.path.join(tmpdir, 'project', 'src', 'user'))


class TestArchiveFailures:
    """Test corrupt and hostile archives"""

    @staticmethod
    def test_corrupt_zip_raises():
        print("\n=== Test: Corrupt Zip ===")
        with tempfile.TemporaryDirectory() as tmpdir:
            with pytest.raises(ArchiveExtractionError):
                extract_project_archive(b'not a zip', os.path.join(tmpdir, 'project'))
        print("✓ ArchiveExtractionError raised")

    @staticmethod
    def test_path_traversal_rejected():
        with tempfile.TemporaryDirectory() as tmpdir:
            archive = make_zip({'src/../../escape.ts': 'x'})
            with pytest.raises(ArchiveExtractionError):
                extract_project_archive(archive, os.path.join(tmpdir, 'project'))
            assert not os.path.exists(os.path.join(tmpdir, 'escape.ts'))


def test_unremovable_extraction_directory_raises(monkeypatch):
    with tempfile.TemporaryDirectory() as tmpdir:
        target = os.path.join(tmpdir, 'project')
        os.makedirs(target)

        def fail_rmtree(path, *args, **kwargs):
            raise PermissionError(13, 'Permission denied', path)

        with monkeypatch.context() as m:
            m.setattr(shutil, 'rmtree', fail_rmtree)
            with pytest.raises(ArchiveExtractionError):
                extract_project_archive(make_project_zip(), target)


class TestSourceEntryFilter:
    @staticmethod
    def test_is_source_entry():
        excluded = ('auth', 'user')
        assert is_source_entry('src/account/account.controller.ts', False, excluded)
        assert is_source_entry('src/', True, excluded)
        assert not is_source_entry('test/app.e2e-spec.ts', False, excluded)
        assert not is_source_entry('src/auth/auth.service.ts', False, excluded)
        assert not is_source_entry('src/modules/user/user.controller.ts', False, excluded)
        assert not is_source_entry('src/user/', True, excluded)
        # only directory names are excluded
        assert is_source_entry('src/common/user', False, excluded)

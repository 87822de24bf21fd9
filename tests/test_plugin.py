from __future__ import annotations

import json

import pytest

from shiori.memory.store import FingerprintStore

HELPER = """
def value():
    return 1
"""

TESTS = """
from helper import value


def test_uses_helper():
    assert value() == 1


def test_plain():
    assert True
"""


@pytest.fixture()
def project(pytester: pytest.Pytester) -> pytest.Pytester:
    pytester.makepyfile(helper=HELPER, test_alpha=TESTS)
    return pytester


def test_second_run_reuses_every_pass(project: pytest.Pytester, run_shiori) -> None:
    first = run_shiori()
    first.assert_outcomes(passed=2)

    second = run_shiori("-v")
    assert second.parseoutcomes().get("cached") == 2
    second.stdout.fnmatch_lines(["*test_uses_helper CACHED*", "*test_plain CACHED*"])
    assert second.ret == 0


def test_editing_helper_reruns_only_its_dependents(project: pytest.Pytester, run_shiori) -> None:
    run_shiori().assert_outcomes(passed=2)

    project.makepyfile(helper="def value():\n    return 1 * 1  # edited\n")
    result = run_shiori("-v")

    outcomes = result.parseoutcomes()
    assert outcomes.get("passed") == 1
    assert outcomes.get("cached") == 1
    result.stdout.fnmatch_lines(["*test_uses_helper PASSED*", "*test_plain CACHED*"])


def test_failing_test_is_never_cached(pytester: pytest.Pytester, run_shiori) -> None:
    pytester.makepyfile(
        test_failing="""
        def test_broken():
            assert 1 == 2


        def test_fine():
            pass
        """
    )
    run_shiori().assert_outcomes(passed=1, failed=1)

    result = run_shiori()
    outcomes = result.parseoutcomes()
    assert outcomes.get("failed") == 1
    assert outcomes.get("cached") == 1


def test_parametrised_cases_are_cached_independently(pytester: pytest.Pytester, run_shiori) -> None:
    pytester.makepyfile(
        test_params="""
        import pytest


        @pytest.mark.parametrize("number", [1, 2])
        def test_is_one(number):
            assert number == 1
        """
    )
    run_shiori().assert_outcomes(passed=1, failed=1)

    outcomes = run_shiori().parseoutcomes()
    assert outcomes.get("failed") == 1
    assert outcomes.get("cached") == 1


def test_marker_opts_out_of_caching(pytester: pytest.Pytester, run_shiori) -> None:
    pytester.makepyfile(
        test_marked="""
        import pytest


        @pytest.mark.shiori(False)
        def test_always_runs():
            pass


        @pytest.mark.shiori(enabled=False)
        def test_always_runs_too():
            pass
        """
    )
    run_shiori().assert_outcomes(passed=2)

    result = run_shiori()
    result.assert_outcomes(passed=2)
    assert "cached" not in result.parseoutcomes()


def test_deleted_dependency_forces_rerun(pytester: pytest.Pytester, run_shiori) -> None:
    pytester.makepyfile(
        extra="def value():\n    return 1\n",
        test_optional="""
        def test_optional_extra():
            try:
                import extra
            except ImportError:
                return
            assert extra.value() == 1
        """,
    )
    run_shiori().assert_outcomes(passed=1)

    (pytester.path / "extra.py").unlink()
    result = run_shiori()
    result.assert_outcomes(passed=1)
    assert "cached" not in result.parseoutcomes()


def test_cache_layout_on_disk(project: pytest.Pytester, run_shiori) -> None:
    run_shiori().assert_outcomes(passed=2)

    cache_dir = project.path / ".shiori_cache"
    global_state = json.loads((cache_dir / "file.json").read_text(encoding="utf-8"))
    tracked = set(global_state["files"])
    assert str(project.path / "helper.py") in tracked
    assert str(project.path / "test_alpha.py") in tracked
    assert len(global_state["libraries"]) == 1

    blobs = [path for path in cache_dir.glob("*.json") if path.name != "file.json"]
    assert len(blobs) == 1
    payload = json.loads(blobs[0].read_text(encoding="utf-8"))
    assert payload["path"] == str(project.path / "test_alpha.py")
    assert all(unit["result"] is True for unit in payload["units"].values())


def test_disabled_mode_bypasses_cache(project: pytest.Pytester, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PYTEST_DISABLE_PLUGIN_AUTOLOAD", "1")
    cache_dir = project.path / ".shiori_cache"
    monkeypatch.setenv("SHIORI_CACHE_DIR", str(cache_dir))

    for _ in range(2):
        result = project.runpytest("-p", "shiori.plugin", "-p", "no:cacheprovider")
        result.assert_outcomes(passed=2)
    assert not cache_dir.exists()


def test_invalid_config_is_a_usage_error(project: pytest.Pytester, run_shiori) -> None:
    (project.path / "shiori.yaml").write_text("enabled: [oops\n", encoding="utf-8")
    result = run_shiori()
    assert result.ret == pytest.ExitCode.USAGE_ERROR


def test_unittest_cases_always_run_and_are_never_cached(pytester: pytest.Pytester, run_shiori) -> None:
    log = pytester.path / "runs.log"
    pytester.makepyfile(
        test_legacy=f"""
        import unittest


        class LegacyCase(unittest.TestCase):
            def test_appends(self):
                with open({str(log)!r}, "a", encoding="utf-8") as handle:
                    handle.write("x")
        """
    )
    run_shiori().assert_outcomes(passed=1)

    result = run_shiori("-v")

    result.assert_outcomes(passed=1)
    assert "cached" not in result.parseoutcomes()
    result.stdout.fnmatch_lines(["*test_appends PASSED*", "0 cached, 0 traced*"])
    assert log.read_text(encoding="utf-8") == "xx"


def test_summary_breaks_down_skip_decisions(project: pytest.Pytester, run_shiori) -> None:
    run_shiori().stdout.fnmatch_lines(["decisions: file-entry 1, unit-entry 1"])
    run_shiori().stdout.fnmatch_lines(["decisions: skip 2"])

    project.makepyfile(helper="def value():\n    return 1 * 1  # edited\n")
    run_shiori().stdout.fnmatch_lines(["decisions: dependencies 1, skip 1"])


def test_unwritable_cache_runs_every_test(
    project: pytest.Pytester, run_shiori, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(FingerprintStore, "_is_writable", staticmethod(lambda path: False))

    for _ in range(2):
        result = run_shiori()
        result.assert_outcomes(passed=2)
        assert "cached" not in result.parseoutcomes()
    assert not (project.path / ".shiori_cache").exists()


def test_inherited_tests_are_keyed_by_node_id(pytester: pytest.Pytester, run_shiori) -> None:
    pytester.makepyfile(
        shared_checks="""
        class SharedChecks:
            def test_shared(self):
                assert True
        """,
        test_derived="""
        from shared_checks import SharedChecks


        class TestDerived(SharedChecks):
            def test_local(self):
                assert True
        """,
    )
    run_shiori().assert_outcomes(passed=2)

    test_file = str(pytester.path / "test_derived.py")
    units = FingerprintStore(pytester.path / ".shiori_cache").load_test_file(test_file).units
    assert sorted(units) == ["0[test_derived.py::TestDerived::test_shared]", "5"]

    assert run_shiori().parseoutcomes().get("cached") == 2

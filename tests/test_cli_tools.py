"""Tests for ballerina_mcp.cli_tools module."""

import json
import os
import stat
import sys

import pytest

from ballerina_mcp.cli_tools import (
    BuildProjectTool,
    NewProjectTool,
    RunProjectTool,
    TestProjectTool,
    coverage_report,
    find_build_artifacts,
    parse_build_errors,
    parse_test_results,
    parse_test_summary,
    register_cli_tools,
)
from ballerina_mcp.config import ServerConfig
from ballerina_mcp.tools import ToolRegistry


def make_project(tmp_path):
    project = tmp_path / "hello"
    project.mkdir()
    (project / "Ballerina.toml").write_text('[package]\nname = "hello"\n')
    return str(project)


def fake_bal_home(tmp_path, exit_code=0):
    """A BAL_HOME whose bin/bal echoes its arguments."""
    home = tmp_path / "bal-home"
    bin_dir = home / "bin"
    bin_dir.mkdir(parents=True)
    script = bin_dir / "bal"
    script.write_text(f'#!/bin/sh\necho "bal $*"\necho "warn" >&2\nexit {exit_code}\n')
    script.chmod(script.stat().st_mode | stat.S_IXUSR)
    return str(home)


def scripted_bal_home(tmp_path, stdout="", stderr="", exit_code=0):
    """A BAL_HOME whose bin/bal prints fixed output."""
    home = tmp_path / "scripted-bal"
    bin_dir = home / "bin"
    bin_dir.mkdir(parents=True)
    (home / "out.txt").write_text(stdout)
    (home / "err.txt").write_text(stderr)
    script = bin_dir / "bal"
    script.write_text(
        f'#!/bin/sh\ncat "{home / "out.txt"}"\ncat "{home / "err.txt"}" >&2\nexit {exit_code}\n'
    )
    script.chmod(script.stat().st_mode | stat.S_IXUSR)
    return str(home)


class TestCommandMapping:
    def test_build_flags(self):
        args = BuildProjectTool().build_command(
            projectPath="/p", offline=True, skipTests=True, codeCoverage=False, cloud=True
        )
        assert args == ["--offline", "--skip-tests", "--cloud=k8s"]

    def test_test_flags(self):
        args = TestProjectTool().build_command(
            projectPath="/p", codeCoverage=True, groups=["unit", "fast"], tests=["testA"]
        )
        assert args == ["--code-coverage", "--groups=unit,fast", "--tests=testA"]

    def test_test_parallel_by_default(self):
        tool = TestProjectTool()
        assert "--disable-parallel" not in tool.build_command(projectPath="/p", parallel=True)
        assert tool.build_command(projectPath="/p", parallel=False) == ["--disable-parallel"]

    def test_test_parallel_schema_default(self):
        schema = TestProjectTool().as_tool().input_schema
        assert schema["properties"]["parallel"]["default"] is True

    def test_run_program_arguments(self):
        args = RunProjectTool().build_command(projectPath="/p", debug=5005, arguments=["a", "b"])
        assert args == ["--debug", "5005", "--", "a", "b"]

    def test_new_library_template(self):
        args = NewProjectTool().build_command(projectName="lib1", projectType="library")
        assert args == ["lib1", "-t", "lib"]

    def test_new_explicit_template(self):
        args = NewProjectTool().build_command(projectName="x", projectType="service", template="graphql")
        assert args == ["x", "-t", "graphql"]


class TestRegistration:
    def test_register_cli_tools(self):
        registry = ToolRegistry()
        register_cli_tools(registry, ServerConfig(request_timeout=5))

        names = [t["name"] for t in registry.list()]
        assert names == [
            "ballerina.project.new",
            "ballerina.project.build",
            "ballerina.project.test",
            "ballerina.project.run",
        ]

    def test_build_requires_project_path(self):
        registry = ToolRegistry()
        register_cli_tools(registry)
        schema = registry.get("ballerina.project.build").input_schema
        assert schema["required"] == ["projectPath"]

    @pytest.mark.asyncio
    async def test_build_without_project_path_is_rejected(self):
        registry = ToolRegistry()
        register_cli_tools(registry)

        result = await registry.call("ballerina.project.build", {})
        assert result.success is False
        assert result.error.startswith("Invalid arguments:")


class TestExecution:
    @pytest.mark.asyncio
    async def test_not_a_project(self, tmp_path):
        result = await BuildProjectTool().execute(projectPath=str(tmp_path))
        assert result.success is False
        assert "Missing Ballerina.toml" in result.error

    @pytest.mark.asyncio
    async def test_missing_executable(self, tmp_path, monkeypatch):
        monkeypatch.setattr("ballerina_mcp.cli_tools.shutil.which", lambda name: None)
        result = await BuildProjectTool().execute(projectPath=make_project(tmp_path))
        assert result.success is False
        assert "executable not found" in result.error

    @pytest.mark.asyncio
    async def test_new_existing_directory(self, tmp_path):
        (tmp_path / "taken").mkdir()
        result = await NewProjectTool().execute(projectName="taken", directory=str(tmp_path))
        assert result.success is False
        assert "already exists" in result.error

    @pytest.mark.skipif(sys.platform == "win32", reason="uses a shell script")
    @pytest.mark.asyncio
    async def test_build_runs_bal(self, tmp_path):
        tool = BuildProjectTool(bal_home=fake_bal_home(tmp_path))
        result = await tool.execute(projectPath=make_project(tmp_path), offline=True)

        assert result.success is True
        assert result.result["stdout"].strip() == "bal build --offline"
        assert result.result["stderr"].strip() == "warn"
        assert result.result["returnCode"] == 0

    @pytest.mark.skipif(sys.platform == "win32", reason="uses a shell script")
    @pytest.mark.asyncio
    async def test_nonzero_exit_is_failure_data(self, tmp_path):
        tool = TestProjectTool(bal_home=fake_bal_home(tmp_path, exit_code=1))
        result = await tool.execute(projectPath=make_project(tmp_path))

        assert result.success is False
        assert "exit code 1" in result.error
        assert result.result["returnCode"] == 1

    @pytest.mark.asyncio
    async def test_timeout(self):
        tool = BuildProjectTool(timeout=0.2)
        result = await tool._run([sys.executable, "-c", "import time; time.sleep(5)"])

        assert result.success is False
        assert "timed out" in result.error


TEST_OUTPUT = """Compiling source
        hello/orders:0.1.0

Running Tests

        orders
                [pass] testCreate
                [fail] orders:testCancel

        3 passing
        1 failing
        2 skipped

        Test Report

        MODULE          TOTAL   PASSED  FAILED  SKIPPED
        orders          4       2       1       1
        orders.util     2       1       0       1

"""


class TestOutputParsing:
    def test_parse_build_errors(self):
        stderr = (
            "Compiling source\n"
            "ERROR [main.bal:(3:5,3:9)] (3:5) undefined symbol 'foo'\n"
            "ERROR [util.bal] (10:1) missing semicolon token\n"
            "error: compilation contains errors\n"
        )
        errors = parse_build_errors(stderr)

        assert errors[-1] == {
            "file": "util.bal",
            "line": 10,
            "column": 1,
            "message": "missing semicolon token",
        }
        assert len(errors) == 2

    def test_parse_test_summary(self):
        assert parse_test_summary(TEST_OUTPUT) == {"passed": 3, "failed": 1, "skipped": 2, "total": 6}

    def test_parse_test_summary_without_tests(self):
        assert parse_test_summary("Generating executable") == {
            "passed": 0, "failed": 0, "skipped": 0, "total": 0,
        }

    def test_parse_test_results(self):
        results = parse_test_results(TEST_OUTPUT)

        assert results["total"] == 6
        assert results["failedTests"] == [{"module": "orders", "test": "testCancel"}]
        assert results["modules"] == [
            {"name": "orders", "total": 4, "passed": 2, "failed": 1, "skipped": 1},
            {"name": "orders.util", "total": 2, "passed": 1, "failed": 0, "skipped": 1},
        ]

    def test_find_build_artifacts(self, tmp_path):
        project = make_project(tmp_path)
        bin_dir = tmp_path / "hello" / "target" / "bin"
        bin_dir.mkdir(parents=True)
        (bin_dir / "hello.jar").write_text("")
        (bin_dir / "hello.log").write_text("")
        bala_dir = tmp_path / "hello" / "target" / "bala"
        bala_dir.mkdir()
        (bala_dir / "hello-any-0.1.0.bala").write_text("")

        assert find_build_artifacts(project) == [
            os.path.join("target", "bala", "hello-any-0.1.0.bala"),
            os.path.join("target", "bin", "hello.jar"),
        ]

    def test_find_build_artifacts_without_target(self, tmp_path):
        assert find_build_artifacts(make_project(tmp_path)) == []

    def test_coverage_report(self, tmp_path):
        project = make_project(tmp_path)
        assert coverage_report(project) is None

        report_dir = tmp_path / "hello" / "target" / "report" / "coverage"
        report_dir.mkdir(parents=True)
        (report_dir / "index.html").write_text("<html></html>")
        assert coverage_report(project) == {
            "reportPath": os.path.join("target", "report", "coverage", "index.html"),
            "available": True,
        }

        (report_dir / "coverage.json").write_text(json.dumps({"summary": {"lines": 80}}))
        assert coverage_report(project)["summary"] == {"lines": 80}


@pytest.mark.skipif(sys.platform == "win32", reason="uses a shell script")
class TestResultDetail:
    @pytest.mark.asyncio
    async def test_build_reports_artifacts_and_tests(self, tmp_path):
        project = make_project(tmp_path)
        bin_dir = tmp_path / "hello" / "target" / "bin"
        bin_dir.mkdir(parents=True)
        (bin_dir / "hello.jar").write_text("")
        tool = BuildProjectTool(bal_home=scripted_bal_home(tmp_path, stdout="2 passing\n0 failing\n0 skipped\n"))

        result = await tool.execute(projectPath=project)

        assert result.success is True
        assert result.result["artifacts"] == [os.path.join("target", "bin", "hello.jar")]
        assert result.result["testResults"] == {"passed": 2, "failed": 0, "skipped": 0, "total": 2}
        assert result.result["coverage"] is None
        assert result.result["message"] == "Build completed successfully"

    @pytest.mark.asyncio
    async def test_build_failure_lists_errors(self, tmp_path):
        tool = BuildProjectTool(bal_home=scripted_bal_home(
            tmp_path, stderr="ERROR [main.bal] (1:1) invalid token\n", exit_code=1
        ))

        result = await tool.execute(projectPath=make_project(tmp_path), skipTests=True)

        assert result.success is False
        assert result.error == "Build failed with exit code 1"
        assert result.result["errors"] == [
            {"file": "main.bal", "line": 1, "column": 1, "message": "invalid token"},
        ]

    @pytest.mark.asyncio
    async def test_failing_tests(self, tmp_path):
        tool = TestProjectTool(bal_home=scripted_bal_home(
            tmp_path, stdout=TEST_OUTPUT, stderr="FAIL orders:testCancel\n", exit_code=1
        ))

        result = await tool.execute(projectPath=make_project(tmp_path))

        assert result.success is False
        assert result.error == "Tests failed"
        assert result.result["failed"] == 1
        assert result.result["failedTests"] == [{"module": "orders", "test": "testCancel"}]
        assert result.result["errors"] == ["FAIL orders:testCancel"]

    @pytest.mark.asyncio
    async def test_passing_tests_with_report(self, tmp_path):
        project = make_project(tmp_path)
        report_dir = tmp_path / "hello" / "target" / "report"
        report_dir.mkdir(parents=True)
        (report_dir / "test_results.html").write_text("")
        tool = TestProjectTool(bal_home=scripted_bal_home(tmp_path, stdout="4 passing\n0 failing\n0 skipped\n"))

        result = await tool.execute(projectPath=project, testReport=True)

        assert result.success is True
        assert result.result["testReport"] == os.path.join("target", "report", "test_results.html")
        assert result.result["message"] == "Tests completed: 4 passed, 0 failed, 0 skipped"

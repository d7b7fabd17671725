"""
Ballerina CLI tools.

Project tools backed by the ``bal`` executable. Each tool maps its
validated arguments onto a ``bal`` sub-command and reports the process
outcome as a ToolResult.
"""

import asyncio
import json
import logging
import os
import re
import shutil
import time
from typing import Any, Dict, List, Optional

from .config import ServerConfig
from .protocol import ToolResult
from .tools import BaseTool, ToolParameter, ToolRegistry


logger = logging.getLogger(__name__)


_BUILD_ERROR_RE = re.compile(r"ERROR \[([^\]]+)\] \((\d+):(\d+)\) (.+)")
_MODULE_ROW_RE = re.compile(r"\s+(\S+)\s+(\d+)\s+(\d+)\s+(\d+)\s+(\d+)")
_FAILED_TEST_RE = re.compile(r"\[fail\]\s+(\S+):(\S+)")
_COUNT_RES = {
    "passed": re.compile(r"(\d+)\s+passing"),
    "failed": re.compile(r"(\d+)\s+failing"),
    "skipped": re.compile(r"(\d+)\s+skipped"),
}

ARTIFACT_SUFFIXES = (".jar", ".bala")


def parse_build_errors(stderr: str) -> List[Dict[str, Any]]:
    """Compiler diagnostics of the form ``ERROR [file] (line:col) message``."""
    errors = []
    for line in stderr.splitlines():
        match = _BUILD_ERROR_RE.search(line)
        if match:
            errors.append({
                "file": match.group(1),
                "line": int(match.group(2)),
                "column": int(match.group(3)),
                "message": match.group(4),
            })
    return errors


def parse_test_summary(stdout: str) -> Dict[str, int]:
    """Passing, failing and skipped counts from the ``bal test`` summary."""
    counts = {}
    for key, pattern in _COUNT_RES.items():
        match = pattern.search(stdout)
        counts[key] = int(match.group(1)) if match else 0
    counts["total"] = counts["passed"] + counts["failed"] + counts["skipped"]
    return counts


def parse_test_results(stdout: str) -> Dict[str, Any]:
    """
    Summary counts plus the per-module table and the failed test names.

    Module rows follow the header line containing MODULE and TOTAL, up to
    the next blank line; failed tests are ``[fail] module:test`` lines.
    """
    results: Dict[str, Any] = parse_test_summary(stdout)
    modules = []
    failed_tests = []
    in_modules = False

    for line in stdout.splitlines():
        if "MODULE" in line and "TOTAL" in line:
            in_modules = True
            continue
        if in_modules and not line.strip():
            in_modules = False

        if in_modules:
            match = _MODULE_ROW_RE.match(line)
            if match:
                modules.append({
                    "name": match.group(1),
                    "total": int(match.group(2)),
                    "passed": int(match.group(3)),
                    "failed": int(match.group(4)),
                    "skipped": int(match.group(5)),
                })

        match = _FAILED_TEST_RE.search(line)
        if match:
            failed_tests.append({"module": match.group(1), "test": match.group(2)})

    results["modules"] = modules
    results["failedTests"] = failed_tests
    return results


def parse_test_errors(stderr: str) -> List[str]:
    return [line.strip() for line in stderr.splitlines() if "ERROR" in line or "FAIL" in line]


def find_build_artifacts(project: str) -> List[str]:
    """``.jar`` and ``.bala`` files under target/, relative to the project."""
    target = os.path.join(project, "target")
    artifacts = []
    for dirpath, _, filenames in os.walk(target):
        for filename in filenames:
            if filename.endswith(ARTIFACT_SUFFIXES):
                artifacts.append(os.path.relpath(os.path.join(dirpath, filename), project))
    return sorted(artifacts)


def coverage_report(project: str) -> Optional[Dict[str, Any]]:
    """Location and summary of the coverage report, if one was generated."""
    report_dir = os.path.join(project, "target", "report", "coverage")
    html_path = os.path.join(report_dir, "index.html")
    json_path = os.path.join(report_dir, "coverage.json")

    if os.path.isfile(json_path):
        try:
            with open(json_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not parse coverage report {json_path}: {e}")
        else:
            return {
                "summary": data.get("summary", {}) if isinstance(data, dict) else {},
                "reportPath": os.path.relpath(html_path, project),
                "jsonPath": os.path.relpath(json_path, project),
            }

    if os.path.isfile(html_path):
        return {"reportPath": os.path.relpath(html_path, project), "available": True}
    return None


def find_test_report(project: str) -> Optional[str]:
    path = os.path.join(project, "target", "report", "test_results.html")
    return os.path.relpath(path, project) if os.path.isfile(path) else None



class BallerinaCommandTool(BaseTool):
    """Base class for tools that run one ``bal`` sub-command."""

    subcommand: str = ""

    def __init__(self, bal_home: Optional[str] = None, timeout: float = 30.0):
        self.bal_home = bal_home
        self.timeout = timeout

    def executable(self) -> Optional[str]:
        """Path of the ``bal`` launcher, or None when it cannot be found."""
        if self.bal_home:
            candidate = os.path.join(self.bal_home, "bin", "bal")
            if os.path.isfile(candidate):
                return candidate
        return shutil.which("bal")

    def build_command(self, **kwargs) -> List[str]:
        """Arguments following ``bal <subcommand>``."""
        return []

    def working_directory(self, **kwargs) -> Optional[str]:
        return kwargs.get("projectPath")

    def check(self, **kwargs) -> Optional[str]:
        """Return an error message when the tool cannot run."""
        project = kwargs.get("projectPath")
        if project is not None and not os.path.isfile(os.path.join(project, "Ballerina.toml")):
            return f"Not a Ballerina project: {project}. Missing Ballerina.toml"
        return None

    async def execute(self, **kwargs) -> ToolResult:
        error = self.check(**kwargs)
        if error:
            return ToolResult.fail(error)

        bal = self.executable()
        if bal is None:
            return ToolResult.fail("Ballerina executable not found; set BAL_HOME or add bal to PATH")

        command = [bal, self.subcommand] + self.build_command(**kwargs)
        result = await self._run(command, cwd=self.working_directory(**kwargs))
        if result.result is None:
            # never ran to completion
            return result
        return self.describe(result, **kwargs)

    def describe(self, result: ToolResult, **kwargs) -> ToolResult:
        """Add sub-command specific detail to a finished run."""
        return result

    async def _run(self, command: List[str], cwd: Optional[str] = None) -> ToolResult:
        logger.info(f"Running: {' '.join(command)}")
        started = time.monotonic()

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            return ToolResult.fail(f"Failed to start {command[0]}: {e}")

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return ToolResult.fail(f"Command timed out after {self.timeout} seconds")

        output = {
            "command": command[1:],
            "stdout": stdout.decode("utf-8", errors="replace"),
            "stderr": stderr.decode("utf-8", errors="replace"),
            "returnCode": process.returncode,
            "duration": round(time.monotonic() - started, 3),
        }

        if process.returncode != 0:
            return ToolResult.fail(
                f"bal {self.subcommand} failed with exit code {process.returncode}",
                result=output,
            )
        return ToolResult.ok(output)


def _flag(enabled: Any, name: str) -> List[str]:
    return [name] if enabled else []


class NewProjectTool(BallerinaCommandTool):
    """Create a new Ballerina project."""

    subcommand = "new"

    @property
    def name(self) -> str:
        return "ballerina.project.new"

    @property
    def description(self) -> str:
        return "Create a new Ballerina project"

    @property
    def parameters(self) -> List[ToolParameter]:
        return [
            ToolParameter("projectName", "string", "Name of the project", required=True),
            ToolParameter(
                "projectType",
                "string",
                "Type of project",
                default="service",
                enum=["service", "library", "application"],
            ),
            ToolParameter("template", "string", "Template to use"),
            ToolParameter("directory", "string", "Directory to create project in"),
        ]

    def check(self, **kwargs) -> Optional[str]:
        directory = kwargs.get("directory") or "."
        if os.path.exists(os.path.join(directory, kwargs["projectName"])):
            return f"Directory already exists: {kwargs['projectName']}"
        return None

    def working_directory(self, **kwargs) -> Optional[str]:
        return kwargs.get("directory")

    def build_command(self, **kwargs) -> List[str]:
        args = [kwargs["projectName"]]
        template = kwargs.get("template")
        if template is None and kwargs.get("projectType") == "library":
            template = "lib"
        elif template is None and kwargs.get("projectType") == "service":
            template = "service"
        if template:
            args += ["-t", template]
        return args


class BuildProjectTool(BallerinaCommandTool):
    """Build a Ballerina project."""

    subcommand = "build"

    @property
    def name(self) -> str:
        return "ballerina.project.build"

    @property
    def description(self) -> str:
        return "Build a Ballerina project"

    @property
    def parameters(self) -> List[ToolParameter]:
        return [
            ToolParameter("projectPath", "string", "Path to the project", required=True),
            ToolParameter("offline", "boolean", "Build offline", default=False),
            ToolParameter("skipTests", "boolean", "Skip running tests", default=False),
            ToolParameter("codeCoverage", "boolean", "Generate code coverage", default=False),
            ToolParameter("cloud", "boolean", "Build for cloud", default=False),
            ToolParameter("observabilityIncluded", "boolean", "Include observability", default=False),
        ]

    def build_command(self, **kwargs) -> List[str]:
        return (
            _flag(kwargs.get("offline"), "--offline")
            + _flag(kwargs.get("skipTests"), "--skip-tests")
            + _flag(kwargs.get("codeCoverage"), "--code-coverage")
            + (["--cloud=k8s"] if kwargs.get("cloud") else [])
            + _flag(kwargs.get("observabilityIncluded"), "--observability-included")
        )

    def describe(self, result: ToolResult, **kwargs) -> ToolResult:
        output = result.result
        project = kwargs["projectPath"]

        if not result.success:
            output["errors"] = parse_build_errors(output["stderr"])
            return ToolResult.fail(f"Build failed with exit code {output['returnCode']}", result=output)

        output["artifacts"] = find_build_artifacts(project)
        output["testResults"] = None if kwargs.get("skipTests") else parse_test_summary(output["stdout"])
        output["coverage"] = coverage_report(project) if kwargs.get("codeCoverage") else None
        output["message"] = "Build completed successfully"
        return ToolResult.ok(output)


class TestProjectTool(BallerinaCommandTool):
    """Run the tests of a Ballerina project."""

    __test__ = False  # not a pytest test class
    subcommand = "test"

    @property
    def name(self) -> str:
        return "ballerina.project.test"

    @property
    def description(self) -> str:
        return "Run tests for a Ballerina project"

    @property
    def parameters(self) -> List[ToolParameter]:
        strings = {"type": "string"}
        return [
            ToolParameter("projectPath", "string", "Path to the project", required=True),
            ToolParameter("codeCoverage", "boolean", "Generate code coverage", default=False),
            ToolParameter("testReport", "boolean", "Generate test report", default=False),
            ToolParameter("groups", "array", "Test groups to run", items=strings),
            ToolParameter("disableGroups", "array", "Test groups to disable", items=strings),
            ToolParameter("tests", "array", "Specific tests to run", items=strings),
            ToolParameter("rerunFailed", "boolean", "Rerun failed tests", default=False),
            ToolParameter("parallel", "boolean", "Run tests in parallel", default=True),
        ]

    def build_command(self, **kwargs) -> List[str]:
        args = (
            _flag(kwargs.get("codeCoverage"), "--code-coverage")
            + _flag(kwargs.get("testReport"), "--test-report")
            + _flag(kwargs.get("rerunFailed"), "--rerun-failed")
            + _flag(kwargs.get("parallel") is False, "--disable-parallel")
        )
        for key, option in (("groups", "--groups"), ("disableGroups", "--disable-groups"), ("tests", "--tests")):
            values = kwargs.get(key)
            if values:
                args.append(f"{option}={','.join(values)}")
        return args

    def describe(self, result: ToolResult, **kwargs) -> ToolResult:
        output = result.result
        project = kwargs["projectPath"]
        output.update(parse_test_results(output["stdout"]))

        if not result.success:
            output["errors"] = parse_test_errors(output["stderr"])
            return ToolResult.fail("Tests failed" if output["failed"] else result.error, result=output)

        output["coverage"] = coverage_report(project) if kwargs.get("codeCoverage") else None
        output["testReport"] = find_test_report(project) if kwargs.get("testReport") else None
        output["message"] = (
            f"Tests completed: {output['passed']} passed, "
            f"{output['failed']} failed, {output['skipped']} skipped"
        )
        return ToolResult.ok(output)


class RunProjectTool(BallerinaCommandTool):
    """Run a Ballerina project."""

    subcommand = "run"

    @property
    def name(self) -> str:
        return "ballerina.project.run"

    @property
    def description(self) -> str:
        return "Run a Ballerina project"

    @property
    def parameters(self) -> List[ToolParameter]:
        return [
            ToolParameter("projectPath", "string", "Path to the project", required=True),
            ToolParameter(
                "arguments", "array", "Arguments to pass to the program", items={"type": "string"}
            ),
            ToolParameter("observabilityIncluded", "boolean", "Include observability", default=False),
            ToolParameter("offline", "boolean", "Run offline", default=False),
            ToolParameter("debug", "number", "Debug port"),
        ]

    def build_command(self, **kwargs) -> List[str]:
        args = (
            _flag(kwargs.get("offline"), "--offline")
            + _flag(kwargs.get("observabilityIncluded"), "--observability-included")
        )
        if kwargs.get("debug") is not None:
            args += ["--debug", str(int(kwargs["debug"]))]
        program_args = kwargs.get("arguments") or []
        if program_args:
            args += ["--"] + list(program_args)
        return args


CLI_TOOLS = (NewProjectTool, BuildProjectTool, TestProjectTool, RunProjectTool)


def register_cli_tools(registry: ToolRegistry, config: Optional[ServerConfig] = None) -> None:
    """Register every Ballerina CLI tool with the registry."""
    config = config or ServerConfig()
    for tool_class in CLI_TOOLS:
        registry.register(tool_class(bal_home=config.bal_home, timeout=config.request_timeout))
    logger.info(f"Registered {len(CLI_TOOLS)} Ballerina tools")

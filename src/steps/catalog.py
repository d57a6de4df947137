"""Ready-made external step bindings for common build stages.

Each factory returns an ExternalStep for one kind of delegated work:
source checkout, build, scans, artifact upload and container handling.
Definitions refer to them by name with ``uses:``.
"""

from typing import Callable, Sequence

from src.reports.models import QUALITY_REPORT, VULNERABILITY_REPORT

from .models import Capture, ExternalStep

# Matches "[INFO] Building shop-api 1.4.0-SNAPSHOT"
MAVEN_VERSION_PATTERN = r"^\[INFO\] Building \S+ (\S+)\s*$"

DEPENDENCY_CHECK_REPORT = "dependency-check-report.json"


def checkout(repository: str, branch: str = "main", directory: str = ".") -> ExternalStep:
    """Shallow clone of one branch."""
    return ExternalStep(
        tool="git",
        args=("clone", "--depth", "1", "--branch", branch, repository, directory),
        description=f"Checkout {repository}@{branch}",
    )


def build(
    goals: Sequence[str] = ("clean", "package"),
    tool: str = "mvn",
    skip_tests: bool = False,
    version_pattern: str = MAVEN_VERSION_PATTERN,
) -> ExternalStep:
    """Build tool invocation that also captures the artifact version."""
    args = ["-B", *goals]
    if skip_tests:
        args.append("-DskipTests")
    return ExternalStep(
        tool=tool,
        args=tuple(args),
        captures={"version": Capture(pattern=version_pattern)},
        description=f"{tool} {' '.join(goals)}",
    )


def filesystem_scan(
    target: str = ".",
    tool: str = "trivy",
    severity: str = "HIGH,CRITICAL",
    fail_on_findings: bool = False,
    report: str = "trivy-fs-report.json",
) -> ExternalStep:
    """Filesystem vulnerability scan writing a JSON report.

    With fail_on_findings the scanner exits 1 when findings at the given
    severity exist, which fails the stage.
    """
    return ExternalStep(
        tool=tool,
        args=(
            "fs",
            "--severity", severity,
            "--exit-code", "1" if fail_on_findings else "0",
            "--format", "json",
            "--output", report,
            target,
        ),
        reports={VULNERABILITY_REPORT: report},
        description=f"Filesystem scan of {target}",
    )


def dependency_scan(
    project: str,
    tool: str = "dependency-check",
    output_dir: str = "dependency-check",
    fail_on_cvss: float | None = None,
) -> ExternalStep:
    """Dependency vulnerability scan producing a JSON report."""
    args = ["--scan", ".", "--project", project, "--format", "JSON", "--out", output_dir]
    if fail_on_cvss is not None:
        args += ["--failOnCVSS", str(fail_on_cvss)]
    return ExternalStep(
        tool=tool,
        args=tuple(args),
        reports={VULNERABILITY_REPORT: f"{output_dir}/{DEPENDENCY_CHECK_REPORT}"},
        description=f"Dependency scan of {project}",
    )


def static_analysis(
    project_key: str,
    server: str = "SONAR",
    tool: str = "sonar-scanner",
    token_credential: str = "sonar-token",
) -> ExternalStep:
    """Static analysis against a named analysis server profile.

    The server URL is read from the variable "<server>_HOST_URL" and the
    token is injected as SONAR_TOKEN.
    """
    return ExternalStep(
        tool=tool,
        args=(
            f"-Dsonar.projectKey={project_key}",
            f"-Dsonar.host.url={{vars[{server}_HOST_URL]}}",
        ),
        credentials={"SONAR_TOKEN": token_credential},
        reports={QUALITY_REPORT: ".scannerwork/report-task.txt"},
        description=f"Static analysis of {project_key} on {server}",
    )


def artifact_upload(
    tool: str = "mvn",
    repository_variable: str = "REPOSITORY_URL",
    username_credential: str = "repository-user",
    password_credential: str = "repository-password",
) -> ExternalStep:
    """Upload to the releases or snapshots repository by version."""
    return ExternalStep(
        tool=tool,
        args=(
            "-B",
            "deploy",
            "-DskipTests",
            "-DaltDeploymentRepository={channel}::default::"
            f"{{vars[{repository_variable}]}}/{{channel}}",
        ),
        credentials={
            "REPOSITORY_USER": username_credential,
            "REPOSITORY_PASSWORD": password_credential,
        },
        description="Upload artifact to the repository for its channel",
    )


def image_build(image: str, context: str = ".", tool: str = "docker") -> ExternalStep:
    """Container image build tagged with the artifact version and latest."""
    return ExternalStep(
        tool=tool,
        args=(
            "build",
            "-t", image + ":{meta[version]}",
            "-t", f"{image}:latest",
            context,
        ),
        description=f"Build image {image}",
    )


def container_deploy(
    image: str,
    container: str,
    ports: Sequence[str] = (),
    tool: str = "docker",
) -> ExternalStep:
    """Run the versioned image as a detached container."""
    args = ["run", "-d", "--rm", "--name", container]
    for port in ports:
        args += ["-p", port]
    args.append(image + ":{meta[version]}")
    return ExternalStep(
        tool=tool,
        args=tuple(args),
        description=f"Deploy {container}",
    )


def image_prune(tool: str = "docker") -> ExternalStep:
    """Remove dangling images. Meant for post-run cleanup."""
    return ExternalStep(
        tool=tool,
        args=("image", "prune", "-f"),
        description="Prune dangling images",
    )


BINDINGS: dict[str, Callable[..., ExternalStep]] = {
    "checkout": checkout,
    "build": build,
    "filesystem_scan": filesystem_scan,
    "dependency_scan": dependency_scan,
    "static_analysis": static_analysis,
    "artifact_upload": artifact_upload,
    "image_build": image_build,
    "container_deploy": container_deploy,
    "image_prune": image_prune,
}

"""
Configuration and distribution profiles for the kernel preflight pipeline.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional
import os
import shlex

from kpreflight.errors import ConfigError


PATCH_CATEGORIES = ["feature", "bugfix", "performance", "security"]

KABI_ORACLES = ["auto", "check-kabi", "symvers"]


@dataclass
class DistroProfile:
    """Header conventions and build target of a downstream distribution."""
    name: str
    defconfig: str
    issue_base_url: str
    mainline_marker: str = "mainline inclusion"
    fix_marker: str = "virt inclusion"
    reference_base_url: str = "https://github.com/torvalds/linux/commit/"
    cve_placeholder: str = "NA"
    separator: str = "--------------------------------"

    def issue_url(self, issue_id: str) -> str:
        """Tracking-issue URL for an issue id."""
        return f"{self.issue_base_url}{issue_id}"

    def reference_url(self, commit: str) -> str:
        """Reference URL of an upstream commit."""
        return f"{self.reference_base_url}{commit}"


# Supported distributions
DISTRO_PROFILES: Dict[str, DistroProfile] = {
    "openeuler": DistroProfile(
        name="openeuler",
        defconfig="openeuler_defconfig",
        issue_base_url="https://atomgit.com/openeuler/kernel/issues/",
    ),
    "anolis": DistroProfile(
        name="anolis",
        defconfig="anolis_defconfig",
        issue_base_url="https://gitee.com/anolis/cloud-kernel/issues/",
    ),
}

SUPPORTED_DISTROS = list(DISTRO_PROFILES.keys())

# Config file keys -> PreflightConfig attribute names
CONFIG_FILE_KEYS: Dict[str, str] = {
    "LINUX_SRC_PATH": "linux_src_path",
    "SIGNER_NAME": "signer_name",
    "SIGNER_EMAIL": "signer_email",
    "BUGZILLA_ID": "bugzilla_id",
    "PATCH_CATEGORY": "patch_category",
    "NUM_PATCHES": "num_patches",
    "BUILD_THREADS": "build_threads",
    "TORVALDS_REPO": "upstream_repo",
    "WORK_DIR": "work_dir",
    "DISTRO": "distro",
    "KABI_ORACLE": "kabi_oracle",
    "BASELINE_BUILD": "baseline_build",
}

_PATH_FIELDS = {"linux_src_path", "upstream_repo", "work_dir"}
_INT_FIELDS = {"num_patches", "build_threads"}
_BOOL_FIELDS = {"baseline_build"}


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "yes", "true", "on")


@dataclass
class PreflightConfig:
    """Configuration for one preflight run."""

    # Kernel tree and canonical upstream mirror
    linux_src_path: Optional[Path] = None
    upstream_repo: Optional[Path] = None

    # Identity and tracking metadata
    signer_name: str = ""
    signer_email: str = ""
    bugzilla_id: str = ""
    patch_category: str = "feature"

    # Series and build
    num_patches: int = 0
    build_threads: int = field(default_factory=lambda: os.cpu_count() or 4)
    distro: str = "openeuler"
    kabi_oracle: str = "auto"
    baseline_build: bool = True

    # Working area
    work_dir: Path = field(default_factory=Path.cwd)

    @property
    def patches_dir(self) -> Path:
        return self.work_dir / "patches"

    @property
    def backup_dir(self) -> Path:
        return self.patches_dir / ".bkp"

    @property
    def logs_dir(self) -> Path:
        return self.work_dir / "logs"

    @property
    def baseline_manifest(self) -> Path:
        """Module interface manifest of the previous build step."""
        return self.work_dir / "kabi" / "Module.symvers_old"

    @property
    def head_id_file(self) -> Path:
        """File holding the saved tree position for manual recovery."""
        return self.work_dir / ".head_commit_id"

    @property
    def profile(self) -> DistroProfile:
        return DISTRO_PROFILES[self.distro]

    @property
    def signoff_line(self) -> str:
        return f"Signed-off-by: {self.signer_name} <{self.signer_email}>"

    def ensure_dirs(self) -> None:
        """Create the working directories."""
        for dir_path in [self.patches_dir, self.backup_dir, self.logs_dir,
                         self.baseline_manifest.parent]:
            dir_path.mkdir(parents=True, exist_ok=True)

    def validate(self) -> None:
        """Raise ConfigError naming every missing or invalid setting."""
        problems: List[str] = []
        required = {
            "LINUX_SRC_PATH": self.linux_src_path,
            "SIGNER_NAME": self.signer_name,
            "SIGNER_EMAIL": self.signer_email,
            "BUGZILLA_ID": self.bugzilla_id,
            "TORVALDS_REPO": self.upstream_repo,
        }
        for key, value in required.items():
            if not value:
                problems.append(f"{key} missing in config")
        if self.num_patches <= 0:
            problems.append("NUM_PATCHES must be a positive number")
        if self.build_threads <= 0:
            problems.append("BUILD_THREADS must be a positive number")
        if self.patch_category not in PATCH_CATEGORIES:
            problems.append(f"PATCH_CATEGORY must be one of {', '.join(PATCH_CATEGORIES)}")
        if self.distro not in DISTRO_PROFILES:
            problems.append(f"Unsupported distro: {self.distro}")
        if self.kabi_oracle not in KABI_ORACLES:
            problems.append(f"KABI_ORACLE must be one of {', '.join(KABI_ORACLES)}")
        if problems:
            raise ConfigError("; ".join(problems))

    def update(self, **overrides) -> "PreflightConfig":
        """Apply non-None overrides (e.g. from CLI options)."""
        for name, value in overrides.items():
            if value is None:
                continue
            if not hasattr(self, name):
                raise ConfigError(f"Unknown setting: {name}")
            if name in _PATH_FIELDS:
                value = Path(value)
            setattr(self, name, value)
        return self

    @classmethod
    def from_file(cls, path: Path) -> "PreflightConfig":
        """
        Load configuration from a shell-style KEY="value" file.

        Args:
            path: Config file path

        Returns:
            PreflightConfig with values from the file
        """
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        values = parse_config_file(path.read_text())
        config = cls(work_dir=path.parent)
        for key, attr in CONFIG_FILE_KEYS.items():
            if key not in values:
                continue
            raw = values[key]
            try:
                if attr in _PATH_FIELDS:
                    setattr(config, attr, Path(raw) if raw else None)
                elif attr in _INT_FIELDS:
                    setattr(config, attr, int(raw) if raw else 0)
                elif attr in _BOOL_FIELDS:
                    setattr(config, attr, _parse_bool(raw))
                else:
                    setattr(config, attr, raw)
            except ValueError:
                raise ConfigError(f"Invalid value for {key}: {raw!r}")
        if config.work_dir is None:
            config.work_dir = path.parent
        return config

    @classmethod
    def from_env(cls) -> "PreflightConfig":
        """Create configuration from KPREFLIGHT_* environment variables."""
        config = cls()
        for key, attr in CONFIG_FILE_KEYS.items():
            raw = os.getenv(f"KPREFLIGHT_{key}")
            if raw is None:
                continue
            try:
                if attr in _PATH_FIELDS:
                    setattr(config, attr, Path(raw))
                elif attr in _INT_FIELDS:
                    setattr(config, attr, int(raw))
                elif attr in _BOOL_FIELDS:
                    setattr(config, attr, _parse_bool(raw))
                else:
                    setattr(config, attr, raw)
            except ValueError:
                raise ConfigError(f"Invalid value for KPREFLIGHT_{key}: {raw!r}")
        return config


def parse_config_file(content: str) -> Dict[str, str]:
    """Parse KEY=value assignments, honouring shell quoting and comments."""
    values: Dict[str, str] = {}
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, raw = line.partition("=")
        key = key.strip()
        if key.startswith("export "):
            key = key[len("export "):].strip()
        try:
            tokens = shlex.split(raw, comments=True)
        except ValueError:
            tokens = [raw.strip().strip("'\"")]
        values[key] = tokens[0] if tokens else ""
    return values


def write_config_file(config: PreflightConfig, path: Path) -> Path:
    """Write a configuration in the shell-style format read by from_file."""
    path = Path(path)
    content = f"""# Kernel preflight configuration
# Generated: {datetime.now().isoformat()}

# General Configuration
LINUX_SRC_PATH="{config.linux_src_path or ''}"
SIGNER_NAME="{config.signer_name}"
SIGNER_EMAIL="{config.signer_email}"
BUGZILLA_ID="{config.bugzilla_id}"
PATCH_CATEGORY="{config.patch_category}"
NUM_PATCHES="{config.num_patches}"
DISTRO="{config.distro}"

# Build Configuration
BUILD_THREADS="{config.build_threads}"
KABI_ORACLE="{config.kabi_oracle}"
BASELINE_BUILD="{'yes' if config.baseline_build else 'no'}"

# Repository Configuration
TORVALDS_REPO="{config.upstream_repo or ''}"
WORK_DIR="{config.work_dir}"
"""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path

"""Project context detection for the system prompt and /context."""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
from git import Repo, InvalidGitRepositoryError, NoSuchPathError
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

UNKNOWN = "unknown"

# (dependency, framework, project type) in priority order
JS_FRAMEWORKS = [
    ("next", "Next.js", "web"),
    ("react", "React", "web"),
    ("vue", "Vue.js", "web"),
    ("express", "Express.js", "backend"),
    ("fastify", "Fastify", "backend"),
    ("electron", "Electron", "desktop"),
]
JS_TEST_FRAMEWORKS = [
    ("jest", "Jest"),
    ("mocha", "Mocha"),
    ("vitest", "Vitest"),
    ("@playwright/test", "Playwright"),
]
PY_FRAMEWORKS = [
    ("django", "Django", "web"),
    ("fastapi", "FastAPI", "backend"),
    ("flask", "Flask", "web"),
]

ENTRY_CANDIDATES = [
    "index.js", "index.ts", "main.js", "main.ts", "app.js", "app.ts",
    "server.js", "server.ts", "main.py", "app.py", "manage.py", "__main__.py",
    "main.go", "main.rs", "lib.rs",
]
SOURCE_DIRS = ["src", "lib", "app", "pages", "components", "api", "tests"]
CONFIG_FILES = [
    "tsconfig.json", ".eslintrc.json", ".eslintrc.js", "eslint.config.js",
    ".prettierrc", "jest.config.js", "vitest.config.ts", "webpack.config.js",
    "vite.config.ts", "next.config.js", "next.config.mjs", "tailwind.config.js",
    "tailwind.config.ts", "pyproject.toml", "setup.cfg", "tox.ini", "pytest.ini",
    "ruff.toml", ".flake8", "Makefile", "Dockerfile", "docker-compose.yml",
]


class ProjectContext(BaseModel):
    """What could be learned about a project directory."""
    path: str
    name: Optional[str] = None
    project_type: str = UNKNOWN
    language: str = UNKNOWN
    framework: str = UNKNOWN
    test_framework: str = UNKNOWN
    linter: str = UNKNOWN
    entry_files: List[str] = Field(default_factory=list)
    config_files: List[str] = Field(default_factory=list)
    has_version_control: bool = False
    branch: Optional[str] = None

    def summary(self) -> str:
        """One-line hint for the system prompt."""
        parts = []
        if self.name:
            parts.append(f"Project: {self.name}")
        if self.language != UNKNOWN:
            parts.append(f"Language: {self.language}")
        if self.framework != UNKNOWN:
            parts.append(f"Framework: {self.framework}")
        if self.test_framework != UNKNOWN:
            parts.append(f"Tests: {self.test_framework}")
        if self.entry_files:
            parts.append(f"Entry: {', '.join(self.entry_files)}")
        if self.has_version_control:
            parts.append(f"Git: {self.branch}" if self.branch else "Git: Yes")
        return " | ".join(parts)


class ProjectContextAnalyzer:
    """Inspects a directory without modifying it.

    Each detector works on its own; a failure in one leaves its fields as
    "unknown" and the rest of the context intact.
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)

    def analyze(self) -> ProjectContext:
        context = ProjectContext(path=str(self.root))
        try:
            files = {p.name for p in self.root.iterdir()}
        except OSError as e:
            logger.debug(f"Cannot list {self.root}: {e}")
            return context

        for detector in (self._detect_node, self._detect_python, self._detect_other_languages):
            try:
                detector(context, files)
            except Exception as e:
                # Best effort: malformed manifests are skipped
                logger.debug("%s failed: %s", detector.__name__, e, exc_info=True)

        context.entry_files = [name for name in ENTRY_CANDIDATES if name in files]
        context.config_files = [f"{name}/" for name in SOURCE_DIRS if (self.root / name).is_dir()]
        context.config_files += [name for name in CONFIG_FILES if name in files]

        self._detect_git(context)

        if context.project_type == UNKNOWN and context.language != UNKNOWN:
            context.project_type = context.language.lower()
        return context

    def _read_json(self, name: str) -> Dict[str, Any]:
        try:
            data = json.loads((self.root / name).read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return {}
        return data if isinstance(data, dict) else {}

    def _detect_node(self, context: ProjectContext, files: set) -> None:
        if "package.json" not in files:
            return
        package = self._read_json("package.json")
        name = package.get("name")
        if isinstance(name, str) and name:
            context.name = name
        deps = _dependency_names(package.get("dependencies"))
        dev_deps = _dependency_names(package.get("devDependencies"))
        everything = deps | dev_deps

        for dependency, framework, project_type in JS_FRAMEWORKS:
            if dependency in everything:
                context.framework = framework
                context.project_type = project_type
                break

        context.language = "TypeScript" if "typescript" in dev_deps or "tsconfig.json" in files else "JavaScript"

        for dependency, name in JS_TEST_FRAMEWORKS:
            if dependency in dev_deps:
                context.test_framework = name
                break

        if "eslint" in dev_deps or any(f.startswith(".eslintrc") or f.startswith("eslint.config") for f in files):
            context.linter = "ESLint"

    def _detect_python(self, context: ProjectContext, files: set) -> None:
        markers = {"pyproject.toml", "requirements.txt", "setup.py", "setup.cfg"}
        if not markers & files:
            return
        context.language = "Python"
        context.project_type = "python"

        text = ""
        for name in ("pyproject.toml", "requirements.txt", "setup.cfg", "setup.py"):
            if name in files:
                text += (self.root / name).read_text(encoding="utf-8", errors="replace").lower()

        for dependency, framework, project_type in PY_FRAMEWORKS:
            if dependency in text:
                context.framework = framework
                context.project_type = project_type
                break

        if "pytest" in text or "pytest.ini" in files or "conftest.py" in files:
            context.test_framework = "pytest"

        if "ruff" in text or "ruff.toml" in files:
            context.linter = "Ruff"
        elif "flake8" in text or ".flake8" in files:
            context.linter = "Flake8"

    def _detect_other_languages(self, context: ProjectContext, files: set) -> None:
        if "Cargo.toml" in files:
            context.language = "Rust"
            context.project_type = "rust"
        if "go.mod" in files:
            context.language = "Go"
            context.project_type = "go"

    def _detect_git(self, context: ProjectContext) -> None:
        try:
            repo = Repo(self.root, search_parent_directories=True)
        except (InvalidGitRepositoryError, NoSuchPathError):
            return
        context.has_version_control = True
        try:
            context.branch = repo.active_branch.name
        except (TypeError, ValueError) as e:
            # Detached HEAD or a repository without commits
            logger.debug(f"No active branch: {e}")
        finally:
            repo.close()


def _dependency_names(section: Any) -> set:
    """Package names of a package.json dependency table; anything else has none."""
    return set(section) if isinstance(section, dict) else set()


def analyze_project(root: Union[str, Path]) -> ProjectContext:
    return ProjectContextAnalyzer(root).analyze()

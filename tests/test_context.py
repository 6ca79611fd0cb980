"""
Tests for project context detection.
"""

import json

from jump_code.core.context import UNKNOWN, ProjectContext, ProjectContextAnalyzer, analyze_project


class TestPythonProject:

    def test_detects_language_and_frameworks(self, sample_project_structure):
        context = ProjectContextAnalyzer(sample_project_structure).analyze()

        assert context.language == "Python"
        assert context.framework == "Flask"
        assert context.project_type == "web"
        assert context.test_framework == "pytest"

    def test_entry_files_and_directories(self, sample_project_structure):
        context = analyze_project(sample_project_structure)

        assert context.entry_files == ["app.py"]
        assert "src/" in context.config_files
        assert "tests/" in context.config_files
        assert "node_modules/" not in context.config_files

    def test_linter_from_pyproject(self, tmp_path):
        (tmp_path / "pyproject.toml").write_text('[project]\nname = "x"\n[tool.ruff]\nline-length = 100\n')
        context = analyze_project(tmp_path)
        assert context.linter == "Ruff"
        assert "pyproject.toml" in context.config_files


class TestNodeProject:

    def test_package_json(self, tmp_path):
        (tmp_path / "package.json").write_text(json.dumps({
            "name": "shop-front",
            "dependencies": {"next": "14.0.0", "react": "18.2.0"},
            "devDependencies": {"typescript": "5.0.0", "jest": "29.0.0", "eslint": "8.0.0"},
        }))
        (tmp_path / "index.ts").write_text("export {}\n")

        context = analyze_project(tmp_path)

        assert context.name == "shop-front"
        assert context.framework == "Next.js"
        assert context.project_type == "web"
        assert context.language == "TypeScript"
        assert context.test_framework == "Jest"
        assert context.linter == "ESLint"
        assert context.entry_files == ["index.ts"]

    def test_plain_javascript(self, tmp_path):
        (tmp_path / "package.json").write_text(json.dumps({"dependencies": {"express": "4"}}))
        context = analyze_project(tmp_path)
        assert context.language == "JavaScript"
        assert context.project_type == "backend"

    def test_non_table_dependencies(self, tmp_path):
        (tmp_path / "package.json").write_text(json.dumps({
            "name": "odd-app",
            "dependencies": 5,
            "devDependencies": True,
        }))
        context = analyze_project(tmp_path)
        assert context.name == "odd-app"
        assert context.framework == UNKNOWN
        assert context.language == "JavaScript"

    def test_dependency_list_and_numeric_name(self, tmp_path):
        (tmp_path / "package.json").write_text(json.dumps({
            "name": 42,
            "dependencies": ["react"],
            "devDependencies": {"jest": "29"},
        }))
        context = analyze_project(tmp_path)
        assert context.framework == UNKNOWN
        assert context.test_framework == "Jest"
        assert context.name is None

    def test_broken_package_json(self, tmp_path):
        (tmp_path / "package.json").write_text("{ nope")
        context = analyze_project(tmp_path)
        assert context.framework == UNKNOWN
        assert context.language == "JavaScript"


class TestOtherLanguages:

    def test_rust(self, tmp_path):
        (tmp_path / "Cargo.toml").write_text('[package]\nname = "x"\n')
        context = analyze_project(tmp_path)
        assert context.language == "Rust"
        assert context.project_type == "rust"

    def test_go(self, tmp_path):
        (tmp_path / "go.mod").write_text("module example.com/x\n")
        assert analyze_project(tmp_path).language == "Go"

    def test_empty_directory(self, tmp_path):
        context = analyze_project(tmp_path)
        assert context.language == UNKNOWN
        assert context.project_type == UNKNOWN
        assert context.entry_files == []

    def test_missing_directory(self, tmp_path):
        context = analyze_project(tmp_path / "gone")
        assert context.path.endswith("gone")
        assert context.language == UNKNOWN


class TestGit:

    def test_branch_detected(self, mock_git_repo):
        context = analyze_project(mock_git_repo)
        assert context.has_version_control is True
        assert context.branch


class TestSummary:

    def test_summary_lists_known_fields(self):
        context = ProjectContext(
            path="/work", name="api", language="Python", framework="FastAPI",
            test_framework="pytest", entry_files=["main.py"], has_version_control=True, branch="main",
        )
        assert context.summary() == (
            "Project: api | Language: Python | Framework: FastAPI | Tests: pytest | Entry: main.py | Git: main"
        )

    def test_summary_skips_unknowns(self):
        assert ProjectContext(path="/work").summary() == ""

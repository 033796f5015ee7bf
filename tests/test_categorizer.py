from recallmem.categorizer import DEFAULT_CATEGORY, categorize


def test_type_and_keywords_pick_debugging() -> None:
    assert categorize(obs_type="bugfix", title="Fix crash on startup") == "debugging"


def test_file_patterns_add_weight() -> None:
    category = categorize(
        obs_type="discovery",
        title="Add pytest fixtures",
        files_modified="tests/test_store.py",
    )
    assert category == "testing"


def test_files_alone_can_decide() -> None:
    assert categorize(obs_type="discovery", title="Tweak", files_read="pyproject.toml") == "config"


def test_security_keywords() -> None:
    assert categorize(obs_type="discovery", title="Rotate the API token") == "security"


def test_knowledge_types_lean_architecture() -> None:
    assert categorize(obs_type="decision", title="Use SQLite") == "architecture"


def test_nothing_matches() -> None:
    assert categorize(obs_type="discovery", title="Lunch") == DEFAULT_CATEGORY

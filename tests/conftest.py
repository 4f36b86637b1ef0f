"""
Shared test fixtures

Static HTML pages served through SoupQueryable and store instances
persisting into a temporary directory.
"""

import sys
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from resilience.adapters import SoupQueryable
from resilience.error_collector import ErrorCollector
from resilience.pattern_learner import PatternLearner
from resilience.result_validator import ResultValidator


LOGIN_PAGE = """
<html>
<head><title>Sign in</title></head>
<body>
  <header>
    <nav role="navigation">
      <a href="/home" id="home-link" data-bbox="10,10,80,20">Home</a>
    </nav>
  </header>
  <main>
    <div class="form-wrapper">
      <form id="login-form">
        <input type="text" name="username" placeholder="Enter username" data-bbox="100,200,200,30">
        <input type="password" name="password" placeholder="Password" data-bbox="100,240,200,30">
        <button id="submit-new" class="btn btn-primary" aria-label="Log in" data-bbox="100,300,120,40">Submit</button>
      </form>
    </div>
    <button id="later-btn" style="display:none">Submit later</button>
    <input type="hidden" name="csrf_token" value="abc123">
  </main>
  <footer>
    <a href="/contact" data-bbox="10,680,80,20">Contact</a>
  </footer>
</body>
</html>
"""


@pytest.fixture
def login_html():
    """Markup of a small login page."""
    return LOGIN_PAGE


@pytest.fixture
def login_page(login_html):
    """Login page behind the DomQueryable interface."""
    return SoupQueryable(login_html)


@pytest.fixture
def store_config(tmp_path):
    """Store configuration persisting under a temporary directory."""
    return {
        'error_collector': {
            'persist_path': str(tmp_path / "errors.json"),
            'auto_persist': False,
        },
        'pattern_learner': {
            'persist_path': str(tmp_path / "patterns.json"),
            'auto_persist': False,
        },
        'result_validator': {},
    }


@pytest.fixture
def collector(store_config):
    """Error collector without automatic persistence."""
    return ErrorCollector(store_config['error_collector'])


@pytest.fixture
def learner(store_config):
    """Pattern learner without automatic persistence."""
    return PatternLearner(store_config['pattern_learner'])


@pytest.fixture
def validator():
    """Result validator with default rules."""
    return ResultValidator()

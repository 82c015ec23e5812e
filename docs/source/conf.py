# docs/source/conf.py
# SPDX-License-Identifier: MIT
"""
Sphinx configuration for socialsync documentation.

socialsync is an async Python client for a hosted social network backend:
feed pagination, threaded comments, messaging with realtime refresh, search,
hashtags, follows, notifications and uploads.

Key choices:
- Theme: shibuya
- Markdown: MyST
- API docs: autodoc + napoleon (Google-style docstrings) + autodoc_pydantic
- Inter-project links: intersphinx (Python/Pydantic/httpx)
"""

from __future__ import annotations

from datetime import date
import os
from pathlib import Path
import sys

# --------------------------------------------------------------------------------------
# Paths & repo metadata
# --------------------------------------------------------------------------------------

DOCS_DIR        = Path(__file__).resolve().parent
REPO_ROOT       = DOCS_DIR.parent.parent  # docs/source -> docs -> repo root
PROJECT_SLUG    = "socialsync"
DEFAULT_BRANCH  = os.getenv("DOCS_BRANCH", "main")

# Make socialsync package importable
sys.path.insert(0, str(REPO_ROOT))

# Settings are read at import time; give autodoc harmless placeholders
os.environ.setdefault("SOCIALSYNC_BACKEND_URL", "https://project.example.co")
os.environ.setdefault("SOCIALSYNC_ANON_KEY", "docs-placeholder-anon-key-000000")
os.environ.setdefault("ENVIRONMENT", "testing")

# --------------------------------------------------------------------------------------
# Project information
# --------------------------------------------------------------------------------------

project   = "socialsync"
author    = "socialsync contributors"
copyright = f"{date.today().year}, {author}"
version   = os.getenv("SOCIALSYNC_VERSION", "0.1.0")
release   = version

# --------------------------------------------------------------------------------------
# General configuration
# --------------------------------------------------------------------------------------

extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.autosummary",
    "sphinx.ext.napoleon",
    "sphinx.ext.viewcode",
    "sphinx.ext.intersphinx",
    "myst_parser",
    "sphinx_copybutton",
    "sphinxcontrib.autodoc_pydantic",
]

templates_path   = ["_templates"]
exclude_patterns = ["_build", "Thumbs.db", ".DS_Store", "**/__pycache__/**"]
source_suffix = {
    ".rst": "restructuredtext",
    ".md" : "markdown",
}
language     = "en"
default_role = "py:obj"

html_theme       = "shibuya"
html_title       = f"{project} Documentation"
html_static_path = ["_static"]

# --------------------------------------------------------------------------------------
# Autodoc / napoleon
# --------------------------------------------------------------------------------------

autodoc_default_options = {
    "members"          : True,
    "member-order"     : "bysource",
    "undoc-members"    : True,
    "show-inheritance" : True,
}
autodoc_typehints         = "description"
autosummary_generate      = True
napoleon_google_docstring = True
napoleon_numpy_docstring  = False
napoleon_use_ivar         = True

autodoc_pydantic_model_show_json           = False
autodoc_pydantic_settings_show_json        = False
autodoc_pydantic_field_show_constraints    = True

# --------------------------------------------------------------------------------------
# Intersphinx
# --------------------------------------------------------------------------------------

intersphinx_mapping = {
    "python"  : ("https://docs.python.org/3", None),
    "pydantic": ("https://docs.pydantic.dev/latest", None),
    "httpx"   : ("https://www.python-httpx.org", None),
}

copybutton_prompt_text      = r">>> |\.\.\. |\$ "
copybutton_prompt_is_regexp = True

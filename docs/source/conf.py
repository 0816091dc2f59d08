# Configuration file for the Sphinx documentation builder.
#
# For the full list of built-in configuration values, see the documentation:
# https://www.sphinx-doc.org/en/master/usage/configuration.html

# -- Project information -----------------------------------------------------

project = 'US Libraries Analyzer'
copyright = '2026, US Libraries Analyzer contributors'
author = 'US Libraries Analyzer contributors'
release = '0.1.0'

# -- General configuration ---------------------------------------------------

extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.autosummary",
]
autosummary_generate = True

# Ensure the project root is on sys.path for autodoc imports.
import os
import sys
sys.path.insert(0, os.path.abspath("../.."))

# Provide a default DATABASE_URL for autodoc imports.
os.environ.setdefault("DATABASE_URL", "postgresql://localhost/us_libraries")

templates_path = ['../_templates']
exclude_patterns = ['_build', 'Thumbs.db', '.DS_Store']

# -- Options for HTML output -------------------------------------------------

html_theme = 'alabaster'
html_static_path = []

# Sphinx configuration file
#
# Build with the docs extra installed:  pip install -e .[docs] && sphinx-build docs docs/_build

import os
import sys
sys.path.insert(0, os.path.abspath('../src'))

project = 'BuildPro Workflows'
copyright = '2024, BuildPro'
author = 'BuildPro'
release = '0.1.0'

extensions = [
    'sphinx.ext.autodoc',
    'sphinx.ext.napoleon',
    'sphinx.ext.viewcode',
    'sphinx.ext.intersphinx',
    'sphinx_autodoc_typehints',
]

templates_path = ['_templates']
exclude_patterns = ['_build', 'Thumbs.db', '.DS_Store']

html_theme = 'sphinx_rtd_theme'

autodoc_default_options = {
    'members': True,
    'member-order': 'bysource',
    'undoc-members': True,
    # Pydantic internals would otherwise flood every model page.
    'exclude-members': 'model_config, model_fields, model_computed_fields',
}
typehints_fully_qualified = False
always_document_param_types = False

napoleon_google_docstring = True
napoleon_numpy_docstring = False

intersphinx_mapping = {
    'python': ('https://docs.python.org/3', None),
    'pydantic': ('https://docs.pydantic.dev/latest', None),
}

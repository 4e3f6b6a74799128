from setuptools import setup

setup(
    name="extraprotein",
    version="0.0.1",
    install_requires=['tree_sitter==0.23.1', 'z3-solver', 'tree-sitter-c==0.23.1'],
    extras_require={"test": ["pytest"]},
    packages=['extraprotein', 'extraprotein.lang'],
)

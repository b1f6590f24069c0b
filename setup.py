from setuptools import setup, find_packages

setup(
    name="codegraph_kb",
    version="0.1.0",
    packages=find_packages(include=["codegraph_kb", "codegraph_kb.*"]),
    python_requires=">=3.11",
    install_requires=[
        "requests",
        "pyyaml",
        # Graph model / local store
        "networkx>=3.0",
        # Source parsing
        "tree-sitter>=0.25",
        "tree-sitter-python",
        "tree-sitter-javascript",
        "tree-sitter-typescript",
        "tree-sitter-java",
        "tree-sitter-go",
        "tree-sitter-rust",
        # Graph database
        "neo4j>=5.0",
        "watchdog>=3.0",
        "tqdm>=4.60",
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
    entry_points={
        "console_scripts": [
            "codegraph=codegraph_kb.cli:main",
        ],
    },
    author="Uday Kanth",
    description="Code knowledge graph: extract, correlate, store and query a source tree.",
)

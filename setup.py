"""Setuptools configuration for the US libraries analyzer."""

from pathlib import Path

from setuptools import find_packages, setup


ROOT = Path(__file__).resolve().parent


def read_requirements(relative_path: str):
    """Read dependency lines from a requirements file."""

    requirements_path = ROOT / relative_path
    if not requirements_path.exists():
        return []

    requirements = []
    for line in requirements_path.read_text(encoding="utf-8").splitlines():
        item = line.strip()
        if not item or item.startswith("#"):
            continue
        requirements.append(item)
    return requirements


setup(
    name="us-libraries-analyzer",
    version="0.1.0",
    description="Seed US library/school/county tables and run canned SQL reports",
    long_description=(ROOT / "README.md").read_text(encoding="utf-8"),
    long_description_content_type="text/markdown",
    packages=find_packages(include=["libraries_analyzer", "libraries_analyzer.*"]),
    include_package_data=True,
    package_data={
        "libraries_analyzer": [
            "templates/*.html",
            "sql/*.sql",
        ]
    },
    install_requires=read_requirements("requirements.txt"),
    extras_require={"test": read_requirements("requirements-test.txt")},
    entry_points={
        "console_scripts": [
            "libraries-analyzer=libraries_analyzer.__main__:main",
        ]
    },
    python_requires=">=3.10",
)

# setup.py
from setuptools import setup, find_namespace_packages

setup(
    name="oralparticipation",
    version="0.1.0",
    packages=find_namespace_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.10",
    install_requires=[
        "python-dateutil",
        "reportlab",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "oralparticipation=oralparticipation.main:main",
        ],
    },
)

"""
Setup file.
"""

from pathlib import Path

from setuptools import find_packages, setup

URL = "https://github.com/zackees/supervised-process"
KEYWORDS = "subprocess supervised process timeout watchdog"
HERE = Path(__file__).parent


if __name__ == "__main__":
    setup(
        name="supervised-process",
        version="1.0.0",
        description="Run external processes with timeouts, captured output and resource metrics",
        maintainer="Zachary Vorhies",
        keywords=KEYWORDS,
        url=URL,
        python_requires=">=3.10",
        package_dir={"": "src"},
        packages=find_packages(where="src"),
        install_requires=["psutil", "click"],
        extras_require={"test": ["pytest"]},
        entry_points={"console_scripts": ["supervised-process=supervised_process.cli:main"]},
        include_package_data=True)

# SPDX-License-Identifier: LGPL-3.0-or-later
from setuptools import setup, find_packages

setup(
    name="smbios2iso",
    version="0.1.0",
    packages=find_packages(include=["smbios2iso", "smbios2iso.*"]),
    package_data={"smbios2iso.identity": ["data/*.yaml"]},
    python_requires=">=3.8",
    install_requires=[l.strip() for l in open("requirements.txt", encoding="utf-8") if l.strip() and not l.startswith("#")],
    extras_require={"test": ["pytest"]},
    entry_points={"console_scripts": ["smbios2iso=smbios2iso.__main__:main"]},
)

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

with open("requirements.txt", "r", encoding="utf-8") as f:
    requirements = [line.strip() for line in f if line.strip() and not line.startswith("#")]

setup(
    name="dbconvert",
    version="1.0.0",
    description="Schema and data conversion between SQL Server and SQLite",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["dbconvert", "dbconvert.*", "config", "extensions",
                                    "extensions.*", "tools"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Database",
    ],
    python_requires=">=3.9",
    install_requires=requirements,
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": [
            "dbconvert=tools.db_converter:main",
        ],
    },
    include_package_data=True,
)

from setuptools import setup, find_packages


with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="twinsim",
    version="0.3.0",
    description="Digital-twin network graph with attack, failure and Monte Carlo risk simulation.",
    long_description=long_description,
    long_description_content_type="text/markdown",
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    packages=find_packages(exclude=("tests", "tests.*")),
    package_data={"twinsim": ["schemas/*.json"]},
    include_package_data=True,
    python_requires=">=3.9",
    install_requires=[
        "networkx",
        "numpy",
        "pandas",
        "pyyaml",
        "jsonschema",
        "matplotlib",
        "seaborn",
    ],
    extras_require={"test": ["pytest"]},
    entry_points={"console_scripts": ["twinsim=twinsim.cli:main"]},
)

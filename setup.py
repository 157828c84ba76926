"""Setup configuration for adinsight package."""

from setuptools import setup, find_packages

setup(
    name="adinsight",
    version="1.0.0",
    description="Analytics core for advertising insight rows: aggregation, delivery gaps and fatigue scoring",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    author="Dean Team",
    python_requires=">=3.9",
    packages=find_packages(where=".", include=["adinsight*"]),
    package_dir={"": "."},
    install_requires=[
        "python-dotenv>=1.0.1",
        "PyYAML>=6.0.2",
        "pytz>=2020.1",
        "pandas>=2.2.2",
        "numpy>=1.24.0",
        "prometheus-client>=0.20.0",
        "jsonschema>=4.23.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
        ],
    },
    entry_points={
        "console_scripts": [
            "adinsight=adinsight.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
)

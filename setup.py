from setuptools import setup, find_packages

setup(
    name="schemaform",
    version="0.1.0",
    description="Schema-driven reactive form runtime",
    author="Metafor Team",
    packages=find_packages(exclude=["tests", "tests.*"]),
    include_package_data=True,
    python_requires=">=3.9",
    install_requires=[
        "pydantic>=2",
    ],
    extras_require={
        "test": [
            "pytest>=7",
        ],
    },
)

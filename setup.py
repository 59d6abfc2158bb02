from setuptools import setup, find_packages

setup(
    name="wallet-point-marketplace",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    package_data={"walletpoint": ["schema.sql"]},
    include_package_data=True,
    install_requires=[
        "flask",
        "werkzeug",
        "prometheus_client",
        "python-json-logger",
        "jsonschema",
    ],
    extras_require={
        "test": ["pytest"],
    },
    python_requires=">=3.8",
)

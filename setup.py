import setuptools


with open('README.md', 'r') as fh:
    long_description = fh.read()

setuptools.setup(
    name="babylog",
    version="0.9.0",
    description="babylog is a small self-hosted feeding and diaper log server.",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=setuptools.find_packages(exclude=('tests', 'tests.*')),
    python_requires='>=3.8',
    classifiers=(
        "Programming Language :: Python :: 3",
        "Development Status :: 3 - Alpha",
        "Intended Audience :: End Users/Desktop",
        "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
        "Topic :: System :: Logging",
        "Topic :: Utilities",
    ),
    install_requires=[
        "PyYAML>=6.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "babylog=babylog.cli.__main__:main",
        ],
    },
)

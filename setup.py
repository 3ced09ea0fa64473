"""
Setup script for GigSight
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read README
readme_path = Path(__file__).parent / "README.md"
long_description = readme_path.read_text() if readme_path.exists() else ""

setup(
    name="gigsight",
    version="0.1.0",
    author="GigSight Team",
    description="Identify which concert a photo or video was taken at from capture metadata and visual cues",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["cli"],
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Multimedia :: Video",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.10",
    install_requires=[
        "Pillow>=10.0.0",
        "exifread>=3.0.0",
        "click>=8.1.0",
        "PyYAML>=6.0",
        "SQLAlchemy>=2.0.0",
        "pydantic>=2.5.0",
        "requests>=2.31.0",
        "boto3>=1.28.0",
        "google-generativeai>=0.5.0",
        "celery>=5.3.0",
        "redis>=5.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-cov>=4.1.0",
        ],
        "color": [
            "colorlog>=6.7.0",
        ],
        "postgres": [
            "psycopg2-binary>=2.9.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "gigsight=cli:main",
        ],
    },
    include_package_data=True,
    package_data={
        "gigsight": ["config.yaml"],
    },
)

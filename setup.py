from setuptools import setup, find_packages

setup(
    name="learned-index",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "numpy>=1.19.0",
        "scikit-learn>=0.24.0",
        "torch>=1.10.0",
        "matplotlib>=3.3.0",
    ],
    extras_require={
        "test": ["pytest>=6.0.0"],
    },
    description="A two-stage recursive model index with an overflow buffer and background retraining",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.8",
)

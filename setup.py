from setuptools import setup, find_packages

setup(
    name="billing-decision-tree",
    version="1.0.0",
    description="Automated medical claim coding decision tree",
    author="Billing Decision Tree Team",
    packages=find_packages(include=["billing_decision_tree", "billing_decision_tree.*"]),
    py_modules=["coding_cli"],
    install_requires=[
        "pandas>=2.0.0",
        "pydantic>=2.0.0",
    ],
    extras_require={
        "test": ["pytest>=7.0.0"],
    },
    entry_points={
        "console_scripts": [
            "billing-decision-tree=coding_cli:main",
        ],
    },
    python_requires=">=3.9",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Healthcare Industry",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
)

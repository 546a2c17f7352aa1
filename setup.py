from setuptools import find_packages, setup

setup(
    name="template_induction",
    version="0.1",
    description="Entity-driven template and role induction with collapsed Gibbs sampling",
    author="Will Gantt, Aaron Steven White",
    author_email="wgantt@cs.rochester.edu, aaron.white@rochester.edu",
    license="MIT",
    packages=find_packages(exclude=["tests"]),
    package_dir={"template_induction": "template_induction"},
    install_requires=[
        "Levenshtein>=0.20",
        "numpy>=1.21",
        "overrides>=3.1",
        "pandas>=1.3",
        "torch>=1.10",
    ],
    extras_require={"test": ["pytest"]},
    zip_safe=False,
)

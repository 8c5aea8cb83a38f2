from typing import Sequence

from setuptools import find_packages, setup

VERSION = "0.4.0"


def get_requirements(path: str = "requirements.txt") -> Sequence[str]:
    with open(path) as fp:
        return [
            x.strip()
            for x in fp.read().split("\n")
            if x.strip() and not x.startswith(("#", "--"))
        ]


setup(
    name="bqdash",
    version=VERSION,
    packages=find_packages(exclude=["tests", "tests.*"]),
    zip_safe=False,
    include_package_data=True,
    install_requires=get_requirements(),
    extras_require={"test": get_requirements("requirements-test.txt")},
    entry_points={"console_scripts": ["bqdash=bqdash.cli:main"]},
)

import setuptools

setuptools.setup(
    name="dprcalc",
    version="0.0.0",
    classifiers=["Programming Language :: Python :: 3"],
    packages=setuptools.find_namespace_packages(include=["dprcalc", "dprcalc.*"]),
    package_data={"dprcalc": ["*.lark", "*.yaml"]},
    install_requires=["lark", "pyyaml", "pandas"],
    extras_require={"test": ["pytest"]},
)

from setuptools import find_packages, setup

setup(
    name='semantic-grid',
    version='0.1.0',
    packages=find_packages(exclude=['tests']),
    python_requires='>=3.8',
    install_requires=[
        'numpy',
        'scipy',
        'plyfile',
        'PyYAML',
    ],
    extras_require={
        'test': ['pytest'],
    },
    zip_safe=True,
    description='Spatial grid indexing, region segmentation and click selection for point clouds',
    tests_require=['pytest'],
    entry_points={
        'console_scripts': [
            'semantic-grid = semantic_grid.cli:main',
        ],
    },
)

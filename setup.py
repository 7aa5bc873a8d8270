from setuptools import setup
from pathlib import Path

root_dir = Path(__file__).parent
readme = (root_dir / 'README.md').read_text()

setup(name='scfpack'
	,version='0.1.0'
	,description='Self consistent field solver for classical Density Functional Theory'
	,long_description=readme
	,long_description_content_type='text/markdown'
	,packages=['scfpack']
	,python_requires='>=3.8'
    ,install_requires=['numpy>=1.22',
                       'scipy>=1.7']
    ,extras_require={'test': ['pytest']}
	)

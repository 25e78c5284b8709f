from setuptools import setup

setup(name='wormbag',
      version='0.5',
      description="wormbag: a Python library for building and reading write-once, holey BagIt bags",
      scripts=[ ],
      packages=['wormbag', 'wormbag.access', 'wormbag.validate'],
      install_requires=['bagit', 'fs>=2.4.16', 'setuptools<81'],
      extras_require={'test': ['pytest']},
      test_suite="tests.suite",
      test_runner="unittest:TextTestRunner"
)

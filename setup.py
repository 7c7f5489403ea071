from setuptools import setup, find_packages

VERSION = '0.1.0'

with open('README.rst', 'r') as fh:
    long_description = fh.read()

with open('requirements.txt', 'r') as fh:
    requirements = [e.strip() for e in fh.readlines() if e.strip() != '']


setup(
    name='invnet',
    version=VERSION,
    packages=find_packages(),
    include_package_data=True,
    package_data={'invnet.config': ['*.json', '*.json.example'],
                  'invnet.trainers.tests': ['resources/*.json']},
    scripts=[],
    license='MIT',
    description='Invertible neural network layers with memory efficient backpropagation in PyTorch.',
    long_description=long_description,
    long_description_content_type='text/x-rst',
    install_requires=requirements,
    extras_require={
        'test': ['pytest']
    },
    python_requires='>=3.8',
    classifiers=[
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "Topic :: Scientific/Engineering",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
        "Topic :: Software Development :: Libraries",
        "Operating System :: OS Independent"
        ],
    keywords='invnet invertible normalizing-flows glow PyTorch',
)

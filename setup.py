from setuptools import find_packages, setup

package_name = 'swathio'

setup(
    name=package_name,
    version='0.1.0',
    packages=find_packages(exclude=['test']),
    data_files=[
        ('share/' + package_name + '/config', ['config/swathio_params.yaml']),
    ],
    python_requires='>=3.8',
    install_requires=[
        'setuptools',
        'numpy',
        'pyproj',
        'PyYAML',
    ],
    zip_safe=True,
    maintainer='Shekhar Devm Upadhyay',
    maintainer_email='sdup@kth.se',
    description='Multibeam sonar log ingestion (HYSWEEP HSX and Simrad EM raw)',
    license='Apache-2.0',
    extras_require={
        'test': [
            'pytest',
        ],
    },
    entry_points={
        'console_scripts': [
            'swathio_inspect = swathio.cli:main',
        ],
    },
)

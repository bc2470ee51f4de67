# -*- coding: utf-8 -*-
import os

# Overlay layers are composited in list order: background first, then the
# boundary and waterway transparencies, then the place names on top.
RADAR_PRODUCTS = [
    {
        'overlay_product': 'IDR713',
        'sweep_product': 'IDR71B',
        'overlay_layers': ['background', 'catchments', 'waterways', 'locations'],
        'frames_max': 7,
        'frame_delay': 50,
        'loop_count': 7
    },
]

FTP_HOST = 'ftp.bom.gov.au'
FTP_PORT = 21
FTP_USER = 'anonymous'
FTP_PASSWD = 'guest'
FTP_TIMEOUT = 30

OVERLAY_DIRECTORY = '/anon/gen/radar_transparencies'
SWEEP_DIRECTORY = '/anon/gen/radar'

HTTP_PORT = 9099

INSTALL_DIRECTORY = os.path.dirname(os.path.realpath(__file__))
LOG_PATH = os.path.join(INSTALL_DIRECTORY, 'status.log')
TEMP_PATH = os.path.join(INSTALL_DIRECTORY, 'temp')
GIF_PATH = os.path.join(INSTALL_DIRECTORY, 'gifs')

#!/usr/bin/python
# -*- coding: utf-8 -*-
import argparse
import io
import logging
from flask import Flask
from flask import send_file
from bom_radar import BuildError
from bom_radar import BuildOptions
from bom_radar import build_product_gif
from bom_radar import setup_logging
from config import HTTP_PORT
from config import RADAR_PRODUCTS

app = Flask(__name__)
app.config['RADAR_VERBOSE'] = False
app.config['RADAR_TEMP_FILES'] = False


@app.route('/')
def default_page():
    return gif_page(0)


@app.route('/<int:product>')
def gif_page(product):
    if product >= len(RADAR_PRODUCTS) or product < 0:
        return '', 204

    options = BuildOptions(
        verbose=app.config['RADAR_VERBOSE'],
        stage_intermediates=app.config['RADAR_TEMP_FILES'])
    try:
        gif_data = build_product_gif(RADAR_PRODUCTS[product], options)
    except BuildError:
        app.logger.exception('Radar GIF build failed')
        return '', 500
    return send_file(io.BytesIO(gif_data), mimetype='image/gif')


if __name__ == '__main__':
    parser = argparse.ArgumentParser(
        description='BOM Radar GIF server',
        formatter_class=argparse.RawTextHelpFormatter)

    options = parser.add_argument_group('Options')
    options.add_argument('-d', '--debug', action='store_true',
                         help='Run Flask with debug=True (Default: False)')
    options.add_argument('--port', type=int, default=HTTP_PORT,
                         help='Port to listen on (Default: {p})'.format(p=HTTP_PORT))
    options.add_argument('-v', '--verbose', action='store_true',
                         help='Log FTP listings and transfer sizes')
    options.add_argument('-t', '--temp-files', action='store_true',
                         help='Save intermediate images of every build')

    args = parser.parse_args()
    setup_logging(args.verbose)
    app.config['RADAR_VERBOSE'] = args.verbose
    app.config['RADAR_TEMP_FILES'] = args.temp_files

    handler = logging.StreamHandler()
    handler.setLevel(logging.DEBUG)
    app.logger.addHandler(handler)

    app.run(host='0.0.0.0', port=args.port, debug=args.debug)

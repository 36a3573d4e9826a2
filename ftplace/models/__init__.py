from ftplace.models.art import TRANSPARENT, ArtFileError, ArtPixel, PixelArt, load_art_file
from ftplace.models.board import BoardSnapshot, ColorInfo
from ftplace.models.queue_item import QueueItem, QueueStatus

"""
Built-in printer model catalog
Templates used to seed new printer instances; never mutated
"""

from typing import Dict, List, Optional

from schemas import InkColor, InkSystem, PaperSize, PrinterType

CMYK = [InkColor.CYAN, InkColor.MAGENTA, InkColor.YELLOW, InkColor.BLACK]
MONO = [InkColor.BLACK]

OFFICE_SIZES = [PaperSize.A4, PaperSize.LETTER, PaperSize.LEGAL]
HOME_SIZES = [PaperSize.A4, PaperSize.LETTER, PaperSize.PHOTO_4X6]

PRINTER_TYPES: List[PrinterType] = [
    PrinterType(
        id="hp-laserjet-pro-m404dn",
        brand="HP",
        model="LaserJet Pro M404dn",
        category="laser",
        ink_system=InkSystem.TONER,
        ink_colors=MONO,
        paper_capacity=350,
        ppm_mono=40,
        ink_usage_factor=0.2,
        supported_paper_sizes=OFFICE_SIZES,
        duplex=True,
    ),
    PrinterType(
        id="hp-color-laserjet-pro-m454dw",
        brand="HP",
        model="Color LaserJet Pro M454dw",
        category="laser",
        ink_system=InkSystem.TONER,
        ink_colors=CMYK,
        paper_capacity=300,
        ppm_mono=28,
        ppm_color=28,
        ink_usage_factor=0.3,
        supported_paper_sizes=OFFICE_SIZES,
        duplex=True,
    ),
    PrinterType(
        id="hp-officejet-pro-9015e",
        brand="HP",
        model="OfficeJet Pro 9015e",
        category="inkjet",
        ink_system=InkSystem.CARTRIDGE,
        ink_colors=CMYK,
        paper_capacity=250,
        ppm_mono=22,
        ppm_color=18,
        supported_paper_sizes=OFFICE_SIZES + [PaperSize.PHOTO_4X6],
        max_resolution_dpi=4800,
        duplex=True,
        scanner=True,
    ),
    PrinterType(
        id="hp-deskjet-2755e",
        brand="HP",
        model="DeskJet 2755e",
        category="inkjet",
        ink_system=InkSystem.CARTRIDGE,
        ink_colors=CMYK,
        paper_capacity=60,
        ppm_mono=7.5,
        ppm_color=5.5,
        ink_usage_factor=1.5,
        supported_paper_sizes=HOME_SIZES,
        scanner=True,
    ),
    PrinterType(
        id="hp-envy-6055e",
        brand="HP",
        model="ENVY 6055e",
        category="inkjet",
        ink_system=InkSystem.CARTRIDGE,
        ink_colors=CMYK,
        paper_capacity=100,
        ppm_mono=10,
        ppm_color=7,
        supported_paper_sizes=HOME_SIZES,
        max_resolution_dpi=4800,
        duplex=True,
        scanner=True,
    ),
    PrinterType(
        id="hp-smart-tank-5101",
        brand="HP",
        model="Smart Tank 5101",
        category="inkjet",
        ink_system=InkSystem.TANK,
        ink_colors=CMYK,
        paper_capacity=100,
        ppm_mono=12,
        ppm_color=5,
        ink_usage_factor=0.4,
        supported_paper_sizes=HOME_SIZES + [PaperSize.LEGAL],
        max_resolution_dpi=4800,
        scanner=True,
    ),
]

_BY_ID: Dict[str, PrinterType] = {ptype.id: ptype for ptype in PRINTER_TYPES}


def get_printer_type(type_id: str) -> Optional[PrinterType]:
    return _BY_ID.get(type_id)


def capabilities_for(ptype: PrinterType) -> Dict:
    """Capability sheet reported by the get-capabilities operation"""
    return {
        "type_id": ptype.id,
        "name": f"{ptype.brand} {ptype.model}",
        "category": ptype.category,
        "ink_system": ptype.ink_system.value,
        "ink_colors": [color.value for color in ptype.ink_colors],
        "color_support": ptype.color_support,
        "duplex_support": ptype.duplex,
        "supported_paper_sizes": [size.value for size in ptype.supported_paper_sizes],
        "max_resolution_dpi": ptype.max_resolution_dpi,
        "print_speed_ppm": ptype.ppm_mono,
        "print_speed_ppm_color": ptype.ppm_color,
        "paper_tray_capacity": ptype.paper_capacity,
        "connectivity": ["USB", "WiFi"] if ptype.wireless else ["USB"],
        "scanner": ptype.scanner,
    }

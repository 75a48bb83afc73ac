# jee_syllabus.py
# Default JEE curriculum loaded by `flask seed-curriculum`
# Teachers extend it from the curriculum page

EXAM_TYPES = {
    'JEE Main': ['Class 11', 'Class 12', 'Dropper'],
    'JEE Advanced': ['Class 12', 'Dropper'],
}

JEE_SYLLABUS = {
    'Physics': {
        'chapters': {
            'Mechanics': {
                'topics': [
                    {'name': 'Units and Measurements', 'overview': 'SI units, dimensional analysis and errors in measurement'},
                    {'name': 'Kinematics', 'overview': 'Motion in one and two dimensions, projectiles, relative velocity'},
                    {'name': "Newton's Laws of Motion", 'overview': 'Three laws, friction, free body diagrams and their applications'},
                    {'name': 'Work, Energy and Power', 'overview': 'Work-energy theorem, conservative forces, collisions'},
                    {'name': 'Rotational Motion', 'overview': 'Torque, moment of inertia, angular momentum, rolling'},
                    {'name': 'Gravitation', 'overview': "Kepler's laws, gravitational potential, orbital velocity"},
                ]
            },
            'Properties of Matter and Thermodynamics': {
                'topics': [
                    {'name': 'Properties of Solids and Liquids', 'overview': 'Elasticity, viscosity, surface tension, fluid flow'},
                    {'name': 'Thermodynamics', 'overview': 'Laws of thermodynamics, heat engines, entropy'},
                    {'name': 'Kinetic Theory of Gases', 'overview': 'Ideal gas behaviour, degrees of freedom, mean free path'},
                ]
            },
            'Oscillations and Waves': {
                'topics': [
                    {'name': 'Simple Harmonic Motion', 'overview': 'Spring and pendulum systems, energy in SHM'},
                    {'name': 'Waves', 'overview': 'Wave equation, superposition, standing waves, Doppler effect'},
                ]
            },
            'Electromagnetism': {
                'topics': [
                    {'name': 'Electrostatics', 'overview': "Coulomb's law, electric field, Gauss's law, potential"},
                    {'name': 'Capacitance', 'overview': 'Capacitors, dielectrics, energy stored'},
                    {'name': 'Current Electricity', 'overview': "Ohm's law, Kirchhoff's rules, Wheatstone bridge"},
                    {'name': 'Magnetic Effects of Current', 'overview': 'Biot-Savart law, Ampere law, force on conductors'},
                    {'name': 'Electromagnetic Induction', 'overview': "Faraday's law, Lenz's law, self and mutual inductance"},
                    {'name': 'Alternating Current', 'overview': 'LCR circuits, resonance, power factor, transformers'},
                ]
            },
            'Optics and Modern Physics': {
                'topics': [
                    {'name': 'Ray Optics', 'overview': 'Reflection, refraction, lenses, optical instruments'},
                    {'name': 'Wave Optics', 'overview': "Interference, diffraction, Young's double slit"},
                    {'name': 'Dual Nature of Matter', 'overview': 'Photoelectric effect, de Broglie wavelength'},
                    {'name': 'Atoms and Nuclei', 'overview': 'Bohr model, radioactivity, nuclear binding energy'},
                    {'name': 'Semiconductors', 'overview': 'Diodes, transistors and logic gates'},
                ]
            },
        }
    },
    'Chemistry': {
        'chapters': {
            'Physical Chemistry': {
                'topics': [
                    {'name': 'Mole Concept', 'overview': 'Stoichiometry, limiting reagent, concentration terms'},
                    {'name': 'Atomic Structure', 'overview': 'Quantum numbers, electron configuration, orbitals'},
                    {'name': 'Chemical Bonding', 'overview': 'VSEPR theory, hybridisation, molecular orbital theory'},
                    {'name': 'Chemical Thermodynamics', 'overview': 'Enthalpy, entropy, Gibbs free energy'},
                    {'name': 'Chemical Equilibrium', 'overview': "Le Chatelier's principle, Kp and Kc"},
                    {'name': 'Ionic Equilibrium', 'overview': 'pH, buffers, solubility product'},
                    {'name': 'Electrochemistry', 'overview': 'Nernst equation, conductance, electrolysis'},
                    {'name': 'Chemical Kinetics', 'overview': 'Rate laws, order of reaction, Arrhenius equation'},
                ]
            },
            'Inorganic Chemistry': {
                'topics': [
                    {'name': 'Periodic Table', 'overview': 'Periodic trends in atomic properties'},
                    {'name': 'p-Block Elements', 'overview': 'Groups 13 to 18, properties and compounds'},
                    {'name': 'd- and f-Block Elements', 'overview': 'Transition elements, lanthanoids and actinoids'},
                    {'name': 'Coordination Compounds', 'overview': 'Werner theory, nomenclature, crystal field theory'},
                ]
            },
            'Organic Chemistry': {
                'topics': [
                    {'name': 'General Organic Chemistry', 'overview': 'Inductive effect, resonance, reaction intermediates'},
                    {'name': 'Hydrocarbons', 'overview': 'Alkanes, alkenes, alkynes and aromatic compounds'},
                    {'name': 'Haloalkanes and Haloarenes', 'overview': 'SN1, SN2 and elimination reactions'},
                    {'name': 'Alcohols, Phenols and Ethers', 'overview': 'Preparation, properties and reactions'},
                    {'name': 'Aldehydes and Ketones', 'overview': 'Nucleophilic addition, named reactions'},
                    {'name': 'Biomolecules', 'overview': 'Carbohydrates, proteins, nucleic acids'},
                ]
            },
        }
    },
    'Mathematics': {
        'chapters': {
            'Algebra': {
                'topics': [
                    {'name': 'Complex Numbers', 'overview': 'Operations on complex numbers, Argand plane, roots of unity'},
                    {'name': 'Quadratic Equations', 'overview': 'Nature of roots, relation between roots and coefficients'},
                    {'name': 'Sequences and Series', 'overview': 'AP, GP, HP and special series'},
                    {'name': 'Permutations and Combinations', 'overview': 'Counting principles and arrangements'},
                    {'name': 'Binomial Theorem', 'overview': 'General term, middle term, binomial coefficients'},
                    {'name': 'Matrices and Determinants', 'overview': 'Matrix algebra, inverse, system of equations'},
                ]
            },
            'Calculus': {
                'topics': [
                    {'name': 'Limits and Continuity', 'overview': 'Fundamental concepts of calculus'},
                    {'name': 'Differentiation', 'overview': 'Derivatives and their applications'},
                    {'name': 'Integration', 'overview': 'Indefinite and definite integrals, area under curves'},
                    {'name': 'Differential Equations', 'overview': 'Order, degree and methods of solution'},
                ]
            },
            'Coordinate Geometry': {
                'topics': [
                    {'name': 'Straight Lines', 'overview': 'Forms of a line, distance and angle between lines'},
                    {'name': 'Circles', 'overview': 'Equation of a circle, tangents and normals'},
                    {'name': 'Conic Sections', 'overview': 'Parabola, ellipse and hyperbola'},
                ]
            },
            'Vectors and Probability': {
                'topics': [
                    {'name': 'Vector Algebra', 'overview': 'Dot and cross products, scalar triple product'},
                    {'name': 'Three Dimensional Geometry', 'overview': 'Lines and planes in space'},
                    {'name': 'Probability', 'overview': "Conditional probability, Bayes' theorem, distributions"},
                ]
            },
        }
    },
}


def iter_topics(subject_name):
    """Yield every topic dict of a subject across its chapters"""
    for chapter in JEE_SYLLABUS.get(subject_name, {}).get('chapters', {}).values():
        yield from chapter.get('topics', [])
